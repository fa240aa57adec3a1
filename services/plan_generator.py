# FILE: services/plan_generator.py
"""
Plan Generator adapter.

Produces a candidate ExecutionPlan for an ALLOW_WITH_AUTH query. The
authorized scope and the in-scope resource names are passed as hints only;
nothing here enforces them. That is the validator's job.
"""

import asyncio
import json
import logging
from asyncio import wait_for, TimeoutError
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from config import PLANNER_TIMEOUT_S, use_offline_models
from core.errors import PlanGenerationError
from core.intent import Intent
from models.plan import ExecutionPlan
from models.query import Query

logger = logging.getLogger("plan_generator")

PlanRunner = Callable[[str], Awaitable[Any]]


def build_prompt(query: Query, intent: Intent, authorized_scope: Iterable[str], hints: Sequence[Dict[str, Any]]) -> str:
    return json.dumps(
        {
            "question": query.text,
            "intent": intent.category.value,
            "authorized_resource_classes": sorted(authorized_scope),
            "sources": list(hints),
        }
    )


async def generate(
    query: Query,
    intent: Intent,
    authorized_scope: Iterable[str],
    *,
    hints: Sequence[Dict[str, Any]] = (),
    runner: Optional[PlanRunner] = None,
    timeout: float = PLANNER_TIMEOUT_S,
) -> ExecutionPlan:
    """
    Returns a candidate plan or raises PlanGenerationError.
    The result is untrusted and must go through the validator.
    """
    scope: List[str] = sorted(authorized_scope)
    if not hints:
        raise PlanGenerationError("No data sources available inside the authorized scope")

    if runner is None and use_offline_models():
        from services.preparser import heuristic_plan

        plan = heuristic_plan(query.text, hints)
        if plan is None:
            raise PlanGenerationError("No resource in scope matches the request")
        logger.info("Heuristic plan: source=%s resources=%s", plan.source_id, [r.resource_id for r in plan.resources])
        return plan

    if runner is None:
        from agents.plan_agent import run_plan_agent

        runner = run_plan_agent

    prompt = build_prompt(query, intent, scope, hints)
    try:
        raw = await wait_for(runner(prompt), timeout=timeout)
    except asyncio.CancelledError:
        raise
    except TimeoutError:
        raise PlanGenerationError("Plan generation timed out") from None
    except Exception as e:
        logger.exception("Plan agent failed")
        raise PlanGenerationError(f"Plan generation failed: {type(e).__name__}") from e

    try:
        plan = raw if isinstance(raw, ExecutionPlan) else ExecutionPlan.model_validate(raw)
    except Exception as e:
        raise PlanGenerationError(f"Plan generator returned a malformed plan: {e}") from e

    logger.info("Generated plan: source=%s resources=%s", plan.source_id, [r.resource_id for r in plan.resources])
    return plan

# FILE: services/response_synthesizer.py
"""
Turns a decision (and, when allowed, a masked result) into user-facing text.

Refusals name the reason category and nothing else. Validation and execution
failures get a generic message; their detail lives in the audit trail.
"""

import logging
import re
from asyncio import wait_for, TimeoutError
from typing import Any, Awaitable, Callable, Optional

from config import KNOWLEDGE_TIMEOUT_S, use_offline_models
from core.decision import PolicyDecision, PolicyOutcome, ReasonCode
from core.errors import ExecutionError, GateError
from models.result import ExecutionResult

logger = logging.getLogger("response_synthesizer")

KnowledgeRunner = Callable[[str], Awaitable[Any]]

MAX_DISPLAY_ROWS = 20

REFUSAL_MESSAGES = {
    ReasonCode.OUT_OF_SCOPE: (
        "I can't help with this request: it is outside what this assistant is allowed to do."
    ),
    ReasonCode.LOW_CONFIDENCE_OR_UNKNOWN: (
        "I can't process this request because I couldn't determine what you are asking for "
        "with enough confidence. Please rephrase it more specifically."
    ),
    ReasonCode.INSUFFICIENT_ENTITLEMENT: (
        "I can't retrieve this data: your account does not have the role required for this kind of request."
    ),
    ReasonCode.EMPTY_SCOPE: (
        "I can't retrieve this data: none of the data areas for this request are available to your account."
    ),
    ReasonCode.NO_MATCHING_RULE: (
        "I can't process this request: no access policy covers this kind of request."
    ),
}

GENERIC_PLAN_FAILURE = "I cannot complete this request."
GENERIC_EXECUTION_FAILURE = (
    "I cannot complete this request right now: the data source did not return a result. "
    "Please try again later."
)

NO_DATA_NOTICE = "This is a general explanation and does not use any of your organisation's data."

# Offline definitions for common planning terms
GLOSSARY = {
    "variance": (
        "Variance is the difference between a planned or budgeted amount and the actual amount. "
        "A favourable variance means results were better than plan; an unfavourable one means worse."
    ),
    "budget": "A budget is a financial plan that sets expected revenues and expenses for a period.",
    "forecast": (
        "A forecast is an updated estimate of future results, revised as actual figures come in."
    ),
    "cost center": (
        "A cost center is an organisational unit that incurs costs but does not directly generate revenue, "
        "used to track and control spending."
    ),
    "accrual": "An accrual records revenue or expense when it is earned or incurred, not when cash moves.",
}


# -----------------------------
# Knowledge answers (no data)
# -----------------------------
def _offline_knowledge(question: str) -> str:
    lowered = question.lower()
    for term, definition in GLOSSARY.items():
        if re.search(rf"\b{re.escape(term)}s?\b", lowered):
            return definition
    return "Here is a general explanation: I can describe concepts and methods, but not specific records."


async def _knowledge_answer(question: str, runner: Optional[KnowledgeRunner]) -> str:
    if runner is None and use_offline_models():
        return _offline_knowledge(question)

    if runner is None:
        from agents.knowledge_agent import run_knowledge_agent

        runner = run_knowledge_agent

    try:
        out = await wait_for(runner(question), timeout=KNOWLEDGE_TIMEOUT_S)
        answer = getattr(out, "answer", out)
        if isinstance(answer, str) and answer.strip():
            return answer.strip()
    except TimeoutError:
        logger.warning("Knowledge agent timed out; using offline answer")
    except Exception:
        logger.exception("Knowledge agent failed; using offline answer")
    return _offline_knowledge(question)


# -----------------------------
# Result formatting
# -----------------------------
def _fmt(value: Any) -> str:
    if isinstance(value, float):
        return f"{value:,.2f}"
    if value is None:
        return "-"
    return str(value)


def format_result(result: ExecutionResult) -> str:
    if not result.rows:
        return "There are no matching records."

    lines = []
    if result.is_aggregate and len(result.rows) == 1:
        row = result.rows[0]
        parts = [f"{k.replace('_', ' ')}: {_fmt(v)}" for k, v in row.items()]
        lines.append("Result: " + ", ".join(parts))
    else:
        lines.append(f"Found {result.row_count} record{'s' if result.row_count != 1 else ''}:")
        for row in result.rows[:MAX_DISPLAY_ROWS]:
            lines.append("- " + " | ".join(f"{k.replace('_', ' ')}: {_fmt(row.get(k))}" for k in result.columns if k in row))
        if result.row_count > MAX_DISPLAY_ROWS:
            lines.append(f"(showing the first {MAX_DISPLAY_ROWS})")

    if result.truncated:
        lines.append("Results were limited to the maximum result size.")
    if result.masked_fields:
        lines.append("Some values were redacted because of data-sensitivity rules.")
    return "\n".join(lines)


# -----------------------------
# synthesize
# -----------------------------
async def synthesize(
    decision: PolicyDecision,
    result: Optional[ExecutionResult] = None,
    *,
    question: str = "",
    knowledge_runner: Optional[KnowledgeRunner] = None,
) -> str:
    if decision.outcome is PolicyOutcome.DENY:
        return REFUSAL_MESSAGES.get(decision.reason_code, REFUSAL_MESSAGES[ReasonCode.NO_MATCHING_RULE])

    if decision.outcome is PolicyOutcome.ALLOW_NO_DATA:
        answer = await _knowledge_answer(question, knowledge_runner)
        return f"{answer}\n\n{NO_DATA_NOTICE}"

    if result is None:
        return GENERIC_PLAN_FAILURE
    return format_result(result)


def synthesize_failure(error: GateError) -> str:
    """User text for terminal failures after an allow decision."""
    if isinstance(error, ExecutionError):
        return GENERIC_EXECUTION_FAILURE
    return GENERIC_PLAN_FAILURE

# FILE: services/intent_classifier.py
"""
Intent Classifier adapter.

Stateless and capability-free: it receives the query text and a bounded slice
of conversation context, never the identity and never a data handle. Whatever
the model returns is forced onto the closed IntentCategory set; any failure
ends in OUT_OF_SCOPE with confidence 0.
"""

import asyncio
import json
import logging
import math
from asyncio import wait_for, TimeoutError
from typing import Any, Awaitable, Callable, Optional, Sequence

from config import (
    CLASSIFIER_CONTEXT_CHARS,
    CLASSIFIER_CONTEXT_TURNS,
    CLASSIFIER_RETRY_BACKOFF_S,
    CLASSIFIER_TIMEOUT_S,
    use_offline_models,
)
from core.errors import ClassificationFailure
from core.intent import Intent, IntentCategory, coerce_category
from models.query import ConversationTurn

logger = logging.getLogger("intent_classifier")

ClassifierRunner = Callable[[str], Awaitable[Any]]


def build_prompt(query_text: str, context: Sequence[ConversationTurn] = ()) -> str:
    turns = list(context)[-CLASSIFIER_CONTEXT_TURNS:] if CLASSIFIER_CONTEXT_TURNS > 0 else []
    payload = {
        "query": query_text,
        "context": [
            {"role": t.role, "text": t.text[:CLASSIFIER_CONTEXT_CHARS]}
            for t in turns
        ],
    }
    return json.dumps(payload)


def coerce_intent(raw: Any) -> Intent:
    """
    Boundary check on classifier output.
    Raises ClassificationFailure when the output is unusable.
    """
    if hasattr(raw, "model_dump"):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        raise ClassificationFailure(f"Malformed classifier output: {type(raw).__name__}")

    label = raw.get("category")
    category = coerce_category(label)
    recognised = category is not IntentCategory.OUT_OF_SCOPE or (
        isinstance(label, str) and label.strip().upper() == IntentCategory.OUT_OF_SCOPE.value
    )
    if not recognised:
        return Intent(
            category=IntentCategory.OUT_OF_SCOPE,
            confidence=0.0,
            rationale=f"coerced from unrecognised label {str(label)[:40]!r}",
        )

    try:
        confidence = float(raw.get("confidence"))
    except (TypeError, ValueError):
        raise ClassificationFailure("Classifier confidence is not a number") from None
    if math.isnan(confidence):
        raise ClassificationFailure("Classifier confidence is NaN")
    confidence = min(max(confidence, 0.0), 1.0)

    rationale = str(raw.get("rationale") or "")[:500]
    return Intent(category=category, confidence=confidence, rationale=rationale)


async def _default_runner(prompt: str) -> Any:
    if use_offline_models():
        from services.preparser import heuristic_intent

        return heuristic_intent(json.loads(prompt)["query"])

    from agents.intent_agent import run_intent_agent

    return await run_intent_agent(prompt)


# -----------------------------
# classify
# -----------------------------
async def classify(
    query_text: str,
    context: Sequence[ConversationTurn] = (),
    *,
    runner: Optional[ClassifierRunner] = None,
    timeout: float = CLASSIFIER_TIMEOUT_S,
    retry_backoff: float = CLASSIFIER_RETRY_BACKOFF_S,
) -> Intent:
    """
    Never raises. Retries a failed classification once, then fails closed.
    """
    runner = runner or _default_runner
    prompt = build_prompt(query_text, context)

    last_error = "unknown"
    for attempt in (1, 2):
        try:
            raw = await wait_for(runner(prompt), timeout=timeout)
            intent = coerce_intent(raw)
            logger.info(
                "[CLASSIFIED] category=%s confidence=%.2f attempt=%d",
                intent.category.value,
                intent.confidence,
                attempt,
            )
            return intent
        except asyncio.CancelledError:
            raise
        except TimeoutError:
            last_error = "timeout"
            logger.warning("Classifier timed out (attempt %d)", attempt)
        except ClassificationFailure as e:
            last_error = str(e)
            logger.warning("Classifier output rejected (attempt %d): %s", attempt, e)
        except Exception as e:
            last_error = f"model error: {type(e).__name__}"
            logger.exception("Classifier model error (attempt %d)", attempt)

        if attempt == 1:
            await asyncio.sleep(retry_backoff)

    return Intent.fail_closed(f"classification failed: {last_error}")

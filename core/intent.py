# core/intent.py
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class IntentCategory(str, Enum):
    """
    Closed set of intent categories.
    Anything the classifier produces outside this set is OUT_OF_SCOPE.
    """

    SAFE_KNOWLEDGE = "SAFE_KNOWLEDGE"
    DATA_QUERY = "DATA_QUERY"
    ANALYSIS = "ANALYSIS"
    OUT_OF_SCOPE = "OUT_OF_SCOPE"

    def touches_data(self) -> bool:
        return self in {IntentCategory.DATA_QUERY, IntentCategory.ANALYSIS}


# Domain labels the model sometimes emits for the same categories
CATEGORY_ALIASES = {
    "FPNA_DATA_QUERY": IntentCategory.DATA_QUERY,
    "FPNA_ANALYSIS": IntentCategory.ANALYSIS,
    "GENERAL_KNOWLEDGE": IntentCategory.SAFE_KNOWLEDGE,
}


def coerce_category(raw: Any) -> IntentCategory:
    """
    Map a raw classifier label onto the closed enumeration.
    Unknown, empty or non-string labels fail closed.
    """
    if isinstance(raw, IntentCategory):
        return raw
    if not isinstance(raw, str):
        return IntentCategory.OUT_OF_SCOPE

    label = raw.strip().upper().replace("-", "_").replace(" ", "_")
    if label in CATEGORY_ALIASES:
        return CATEGORY_ALIASES[label]
    try:
        return IntentCategory(label)
    except ValueError:
        return IntentCategory.OUT_OF_SCOPE


class Intent(BaseModel):
    """
    Advisory classification of a query.
    Carries no capability and is never mutated after classification.
    """

    model_config = ConfigDict(frozen=True)

    category: IntentCategory
    confidence: float = Field(..., ge=0.0, le=1.0)
    rationale: str = ""

    @classmethod
    def fail_closed(cls, rationale: str) -> "Intent":
        return cls(
            category=IntentCategory.OUT_OF_SCOPE,
            confidence=0.0,
            rationale=rationale,
        )

# core/decision.py
from enum import Enum
from typing import FrozenSet, Optional

from pydantic import BaseModel, ConfigDict, Field

from core.intent import IntentCategory


class PolicyOutcome(str, Enum):
    ALLOW_NO_DATA = "ALLOW_NO_DATA"
    ALLOW_WITH_AUTH = "ALLOW_WITH_AUTH"
    DENY = "DENY"


class ReasonCode(str, Enum):
    """
    Stable reason codes. These are shown to users in refusals,
    so they name a category of reason and never a resource.
    """

    SAFE_KNOWLEDGE = "safe_knowledge"
    AUTHORIZED = "authorized"
    OUT_OF_SCOPE = "out_of_scope"
    LOW_CONFIDENCE_OR_UNKNOWN = "low_confidence_or_unknown_intent"
    INSUFFICIENT_ENTITLEMENT = "insufficient_entitlement"
    EMPTY_SCOPE = "empty_scope"
    NO_MATCHING_RULE = "no_matching_rule"

    # Terminal failures after an allow decision
    PLAN_REJECTED = "plan_rejected"
    PLAN_UNAVAILABLE = "plan_unavailable"
    EXECUTION_FAILED = "execution_failed"


class PolicyDecision(BaseModel):
    """
    The single, immutable verdict for one query.
    Never cached across requests.
    """

    model_config = ConfigDict(frozen=True)

    category: IntentCategory
    outcome: PolicyOutcome
    authorized_scope: FrozenSet[str] = Field(default_factory=frozenset)
    reason_code: ReasonCode
    policy_version: str
    catalog_version: Optional[int] = None

    # -----------------------------
    # Semantic helpers
    # -----------------------------
    def is_deny(self) -> bool:
        return self.outcome is PolicyOutcome.DENY

    def allows_data(self) -> bool:
        return self.outcome is PolicyOutcome.ALLOW_WITH_AUTH

# FILE: models/query.py
import uuid
from typing import FrozenSet, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from core.decision import PolicyOutcome, ReasonCode

# -----------------------------
# Identity
# -----------------------------
class Identity(BaseModel):
    """Requesting principal. Roles gate categories, entitlements gate tagged fields."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    tenant: str = "default"
    roles: FrozenSet[str] = Field(default_factory=frozenset)
    entitlements: FrozenSet[str] = Field(default_factory=frozenset)

    @field_validator("user_id", mode="before")
    @classmethod
    def validate_user_id(cls, v):
        if v is None:
            raise ValueError("User ID cannot be None")
        if isinstance(v, (int, float)):
            v = str(int(v))
        if not isinstance(v, str) or not v.strip():
            raise ValueError("User ID cannot be empty")
        return v.strip()

    @field_validator("roles", "entitlements", mode="before")
    @classmethod
    def normalize_labels(cls, v):
        if v is None:
            return frozenset()
        if isinstance(v, str):
            v = [v]
        return frozenset(str(item).strip().lower() for item in v if str(item).strip())

# -----------------------------
# Conversation Context
# -----------------------------
class ConversationTurn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"] = "user"
    text: str = ""

# -----------------------------
# Query (immutable once received)
# -----------------------------
class Query(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    text: str
    context: Tuple[ConversationTurn, ...] = ()
    identity: Identity

    @field_validator("text")
    @classmethod
    def text_must_not_be_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("Query text cannot be empty")
        return v

# -----------------------------
# Upstream request / response (API)
# -----------------------------
class GateRequest(BaseModel):
    query_text: str
    identity: Identity
    conversation_context: List[ConversationTurn] = Field(default_factory=list)

    def to_query(self) -> Query:
        return Query(
            text=self.query_text,
            context=tuple(self.conversation_context),
            identity=self.identity,
        )


class GateResponse(BaseModel):
    request_id: str
    response_text: str
    decision_outcome: PolicyOutcome
    reason_code: ReasonCode
    audit_id: Optional[str] = None

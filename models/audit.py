# FILE: models/audit.py
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class AuditStage(str, Enum):
    CLASSIFICATION = "classification"
    DECISION = "decision"
    PLAN_GENERATION = "plan_generation"
    VALIDATION = "validation"
    EXECUTION = "execution"
    RESPONSE = "response"


class AuditRecord(BaseModel):
    """
    One stage transition of one request.
    Written once, never mutated, never deleted by the pipeline.
    """

    model_config = ConfigDict(frozen=True)

    audit_id: str
    request_id: str
    sequence: int = Field(..., ge=0)
    stage: AuditStage
    user_id: str
    tenant: str
    roles: Tuple[str, ...] = ()
    timestamp: datetime
    summary: Dict[str, Any] = Field(default_factory=dict)
    payload_hash: str
    previous_hash: Optional[str] = None

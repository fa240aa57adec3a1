# FILE: models/result.py
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

# -----------------------------
# Execution Result (Gateway → Synthesizer)
# -----------------------------
class ExecutionResult(BaseModel):
    """Rows as returned by the gateway, already masked."""

    source_id: str
    resource_id: str
    schema_version: int
    rows: List[Dict[str, Any]] = Field(default_factory=list)
    columns: List[str] = Field(default_factory=list)
    is_aggregate: bool = False
    truncated: bool = False
    masked_fields: List[str] = Field(default_factory=list)
    meta: Optional[Dict[str, Any]] = None

    @property
    def row_count(self) -> int:
        return len(self.rows)

# FILE: models/policy.py
"""
Policy table: intent category → required roles and resource classes.

The table is data, not code. It lives in a versioned JSON file so it can be
reviewed and changed without touching the decision logic.
"""

import json
import logging
from pathlib import Path
from typing import Dict, FrozenSet, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from core.errors import PolicyTableError
from core.intent import IntentCategory

logger = logging.getLogger("policy_table")


def _label_set(v) -> FrozenSet[str]:
    if v is None:
        return frozenset()
    if isinstance(v, str):
        v = [v]
    return frozenset(str(item).strip().lower() for item in v if str(item).strip())


class PolicyEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    required_roles: FrozenSet[str] = Field(default_factory=frozenset)
    resource_classes: FrozenSet[str] = Field(default_factory=frozenset)
    out_of_scope: bool = False

    @field_validator("required_roles", "resource_classes", mode="before")
    @classmethod
    def normalize(cls, v):
        return _label_set(v)


class PolicyTable(BaseModel):
    model_config = ConfigDict(frozen=True)

    version: str
    confidence_threshold: float = Field(0.6, ge=0.0, le=1.0)
    entries: Dict[str, PolicyEntry] = Field(default_factory=dict)

    # Optional per-role narrowing of resource classes.
    # When a requester holds several granted roles, the intersection applies.
    role_grants: Dict[str, FrozenSet[str]] = Field(default_factory=dict)

    @field_validator("entries", mode="before")
    @classmethod
    def check_categories(cls, v):
        if not isinstance(v, dict):
            raise ValueError("entries must be an object keyed by intent category")
        normalized = {}
        for key, entry in v.items():
            label = str(key).strip().upper()
            if label not in IntentCategory.__members__:
                raise ValueError(f"Unknown intent category in policy table: {key!r}")
            normalized[label] = entry
        return normalized

    @field_validator("role_grants", mode="before")
    @classmethod
    def normalize_grants(cls, v):
        if v is None:
            return {}
        return {str(role).strip().lower(): _label_set(classes) for role, classes in v.items()}

    def entry_for(self, category: IntentCategory):
        return self.entries.get(category.value)


def load_policy_table(path: Union[str, Path]) -> PolicyTable:
    """Read and validate a policy table file."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        table = PolicyTable.model_validate(raw)
    except (OSError, json.JSONDecodeError, ValidationError) as e:
        raise PolicyTableError(f"Cannot load policy table from {path}: {e}") from e

    logger.info(
        "Loaded policy table version=%s categories=%s",
        table.version,
        sorted(table.entries),
    )
    return table

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from models.plan import aggregate_alias
from models.query import Identity
from models.schema import SchemaSnapshot, SourceFamily
from services.plan_validator import ValidatedPlan

MASK = "***REDACTED***"


class SourceAdapter(ABC):
    """
    Base contract for all data-source adapters.
    One adapter per source family; the gateway picks one by source id.
    Adapters only ever see ValidatedPlan values.
    """

    family: SourceFamily

    @abstractmethod
    def translate(self, plan: ValidatedPlan) -> Any:
        """Build the native query. Must not perform I/O."""

    @abstractmethod
    async def run(self, native_query: Any, *, max_rows: int) -> List[Dict[str, Any]]:
        """Execute read-only. Raise ExecutionError / TransientExecutionError on failure."""

    def apply_masking(
        self,
        rows: List[Dict[str, Any]],
        snapshot: SchemaSnapshot,
        identity: Identity,
        plan: ValidatedPlan,
    ) -> Tuple[List[Dict[str, Any]], List[str]]:
        return mask_rows(rows, snapshot, identity, plan)


# -----------------------------
# Masking
# -----------------------------
def output_columns(plan: ValidatedPlan) -> List[str]:
    columns = list(plan.fields)
    if plan.plan.aggregation is not None:
        columns.append(aggregate_alias(plan.plan.aggregation))
    return columns


def mask_rows(
    rows: List[Dict[str, Any]],
    snapshot: SchemaSnapshot,
    identity: Identity,
    plan: ValidatedPlan,
) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Keep only the validated output columns and redact any field whose
    sensitivity tags exceed the identity's entitlements.
    Runs even though the validator already excluded such fields.
    """
    resource = snapshot.get_resource(plan.resource.resource_id)
    allowed = output_columns(plan)

    redacted = set()
    for name in allowed:
        spec = resource.get_field(name) if resource is not None else None
        if spec is not None and spec.sensitivity - identity.entitlements:
            redacted.add(name)

    masked: List[Dict[str, Any]] = []
    for row in rows:
        out: Dict[str, Any] = {}
        for name in allowed:
            if name not in row:
                continue
            out[name] = MASK if name in redacted else row[name]
        masked.append(out)

    return masked, sorted(redacted)


# -----------------------------
# Helper: compute aggregate (Python-side)
# -----------------------------
def to_decimal_list(rows: List[Dict[str, Any]], attr: Optional[str]) -> List[Decimal]:
    vals: List[Decimal] = []
    for r in rows:
        v = r.get(attr) if attr else None
        if v is None:
            continue
        vals.append(Decimal(str(v)))
    return vals


def compute_aggregate(rows: List[Dict[str, Any]], op: str, attr: Optional[str]) -> Optional[float]:
    if op == "count":
        if attr:
            return len([r for r in rows if r.get(attr) is not None])
        return len(rows)
    decimals = to_decimal_list(rows, attr)
    if not decimals:
        return None if op in ("min", "max", "avg") else 0.0
    if op == "sum":
        return float(sum(decimals))
    if op == "avg":
        return float(sum(decimals) / Decimal(len(decimals)))
    if op == "min":
        return float(min(decimals))
    if op == "max":
        return float(max(decimals))
    return None

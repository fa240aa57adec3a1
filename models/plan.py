# FILE: models/plan.py
"""
Candidate execution plans.

These models describe what the plan generator *asked for*. Nothing here is
trusted: verbs, operators and aggregate functions are plain strings so that a
bad plan reaches the validator and is rejected there with a specific error,
instead of disappearing inside a parsing failure.
"""

from typing import Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Read-only verbs the validator accepts
READ_ONLY_OPERATIONS = frozenset({"read", "select", "find", "aggregate"})

FILTER_OPERATORS = frozenset({"eq", "ne", "gt", "gte", "lt", "lte", "in", "contains"})

AGGREGATE_FUNCTIONS = frozenset({"sum", "avg", "count", "min", "max"})

SORT_ORDERS = frozenset({"asc", "desc"})

DEFAULT_PLAN_LIMIT = 100

# -----------------------------
# Plan parts
# -----------------------------
class PlanResource(BaseModel):
    model_config = ConfigDict(frozen=True)

    resource_id: str = Field(..., description="Table or collection identifier")
    fields: Tuple[str, ...] = Field(
        default=(),
        description="Fields to return; empty means every field of the resource",
    )


class PlanFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    field: str
    op: str = Field("eq", description="eq, ne, gt, gte, lt, lte, in, contains")
    value: Union[bool, int, float, str, Tuple[Union[int, float, str], ...], None] = None


class PlanAggregation(BaseModel):
    model_config = ConfigDict(frozen=True)

    function: str = Field(..., description="sum, avg, count, min or max")
    field: Optional[str] = Field(None, description="Omitted only for count")
    group_by: Tuple[str, ...] = ()

# -----------------------------
# Candidate plan (Generator → Validator)
# -----------------------------
class ExecutionPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: str = Field(..., description="Target data source id")
    operation: str = Field("read", description="Requested verb; only reads are allowed")
    resources: Tuple[PlanResource, ...] = ()
    filters: Tuple[PlanFilter, ...] = ()
    aggregation: Optional[PlanAggregation] = None
    sort_by: Optional[str] = None
    sort_order: str = "desc"
    limit: int = DEFAULT_PLAN_LIMIT

    @field_validator("limit", mode="before")
    @classmethod
    def default_limit(cls, v):
        return v if isinstance(v, int) and v > 0 else DEFAULT_PLAN_LIMIT

    @field_validator("sort_order", mode="before")
    @classmethod
    def default_sort_order(cls, v):
        return v.lower() if isinstance(v, str) and v else "desc"


def aggregate_alias(aggregation: PlanAggregation) -> str:
    """Output column name of an aggregate, e.g. `sum_variance` or `count`."""
    if aggregation.field and aggregation.function != "count":
        return f"{aggregation.function}_{aggregation.field}"
    if aggregation.field:
        return f"count_{aggregation.field}"
    return "count"

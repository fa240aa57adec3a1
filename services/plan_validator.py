# FILE: services/plan_validator.py
"""
Plan Validator: the second, independent security boundary.

A candidate plan comes from a generator that may hallucinate or be steered by
the user. This module checks it against the pinned schema snapshot, the
policy decision and the identity, and is the ONLY place a ValidatedPlan can be
produced. The execution gateway accepts nothing else.

Checks, in order:
    (a) resources and fields exist in the snapshot      → UnknownResource
    (b) resource classes are inside the decision scope  → ScopeViolation
    (c) field sensitivity tags are covered by the
        identity's entitlements                        → EntitlementMissing
    (d) the operation is a read with supported parts    → UnsupportedOperation
"""

import logging
from typing import List, Tuple

from core.decision import PolicyDecision
from core.errors import PlanValidationError, PlanValidationErrorKind
from models.plan import (
    AGGREGATE_FUNCTIONS,
    FILTER_OPERATORS,
    READ_ONLY_OPERATIONS,
    SORT_ORDERS,
    ExecutionPlan,
    aggregate_alias,
)
from models.query import Identity
from models.schema import ResourceSpec, SchemaSnapshot

logger = logging.getLogger("plan_validator")

_SEAL = object()

_SCALAR_TYPES = (bool, int, float, str)


# -----------------------------
# Validated Plan (sealed)
# -----------------------------
class ValidatedPlan:
    """
    A plan proven to reference only existing, authorized,
    entitlement-covered fields of the pinned snapshot.

    Constructing one anywhere but `validate()` raises TypeError.
    """

    __slots__ = ("plan", "snapshot", "decision", "identity", "resource", "fields")

    def __init__(self, seal, *, plan, snapshot, decision, identity, resource, fields):
        if seal is not _SEAL:
            raise TypeError("ValidatedPlan can only be produced by plan_validator.validate()")
        object.__setattr__(self, "plan", plan)
        object.__setattr__(self, "snapshot", snapshot)
        object.__setattr__(self, "decision", decision)
        object.__setattr__(self, "identity", identity)
        object.__setattr__(self, "resource", resource)
        object.__setattr__(self, "fields", fields)

    def __setattr__(self, name, value):
        raise AttributeError("ValidatedPlan is immutable")

    def __delattr__(self, name):
        raise AttributeError("ValidatedPlan is immutable")

    def __reduce__(self):
        raise TypeError("ValidatedPlan cannot be pickled or copied")

    @property
    def source_id(self) -> str:
        return self.snapshot.source_id

    @property
    def schema_version(self) -> int:
        return self.snapshot.version

    def __repr__(self) -> str:
        return (
            f"ValidatedPlan(source={self.source_id!r}, resource={self.resource.resource_id!r}, "
            f"fields={list(self.fields)!r}, schema_version={self.schema_version})"
        )


def _reject(kind: PlanValidationErrorKind, detail: str) -> PlanValidationError:
    logger.warning("Plan rejected: %s - %s", kind.value, detail)
    return PlanValidationError(kind, detail)


# -----------------------------
# Helpers
# -----------------------------
def _projection(plan: ExecutionPlan, resource: ResourceSpec) -> Tuple[str, ...]:
    """Fields the result will carry. An empty or `*` projection means every field."""
    if plan.aggregation is not None:
        return tuple(plan.aggregation.group_by)

    requested = list(plan.resources[0].fields)
    if not requested or requested == ["*"]:
        return resource.field_names()
    return tuple(dict.fromkeys(requested))


def _referenced_fields(plan: ExecutionPlan, projection: Tuple[str, ...]) -> List[str]:
    """Every field of the primary resource the plan mentions, listed or not."""
    referenced = list(projection)
    referenced.extend(name for name in plan.resources[0].fields if name != "*")
    referenced.extend(f.field for f in plan.filters)
    if plan.aggregation is not None:
        if plan.aggregation.field:
            referenced.append(plan.aggregation.field)
        referenced.extend(plan.aggregation.group_by)
    if plan.sort_by and not (plan.aggregation and plan.sort_by == aggregate_alias(plan.aggregation)):
        referenced.append(plan.sort_by)
    return list(dict.fromkeys(referenced))


def _field_references(
    plan: ExecutionPlan, resources: List[ResourceSpec], projection: Tuple[str, ...]
) -> List[Tuple[ResourceSpec, str]]:
    refs = [(resources[0], name) for name in _referenced_fields(plan, projection)]
    for pr, spec in zip(plan.resources[1:], resources[1:]):
        refs.extend((spec, name) for name in dict.fromkeys(pr.fields) if name != "*")
    return refs


def _is_safe_value(value) -> bool:
    if value is None or isinstance(value, _SCALAR_TYPES):
        return True
    if isinstance(value, (list, tuple)):
        return all(isinstance(v, _SCALAR_TYPES) for v in value)
    return False


# -----------------------------
# Core: validate
# -----------------------------
def validate(
    plan: ExecutionPlan,
    snapshot: SchemaSnapshot,
    decision: PolicyDecision,
    identity: Identity,
) -> ValidatedPlan:
    """
    Returns a ValidatedPlan or raises PlanValidationError.
    Holds even when the decision or the generator misbehaves.
    """

    # -------- Preconditions --------
    if not decision.allows_data():
        raise _reject(
            PlanValidationErrorKind.SCOPE_VIOLATION,
            f"decision outcome {decision.outcome.value} grants no data access",
        )
    if plan.source_id != snapshot.source_id:
        raise _reject(
            PlanValidationErrorKind.UNKNOWN_RESOURCE,
            f"plan targets source {plan.source_id!r} but snapshot is for {snapshot.source_id!r}",
        )
    if not plan.resources:
        raise _reject(PlanValidationErrorKind.UNKNOWN_RESOURCE, "plan references no resource")

    # -------- (a) existence --------
    resources: List[ResourceSpec] = []
    for pr in plan.resources:
        spec = snapshot.get_resource(pr.resource_id)
        if spec is None:
            raise _reject(
                PlanValidationErrorKind.UNKNOWN_RESOURCE,
                f"resource {pr.resource_id!r} not in {snapshot.source_id} v{snapshot.version}",
            )
        resources.append(spec)

    primary = resources[0]
    projection = _projection(plan, primary)
    references = _field_references(plan, resources, projection)

    for spec, name in references:
        if spec.get_field(name) is None:
            raise _reject(
                PlanValidationErrorKind.UNKNOWN_RESOURCE,
                f"field {spec.resource_id}.{name} not in {snapshot.source_id} v{snapshot.version}",
            )

    # -------- (b) scope --------
    for spec in resources:
        if spec.resource_class not in decision.authorized_scope:
            raise _reject(
                PlanValidationErrorKind.SCOPE_VIOLATION,
                f"resource {spec.resource_id!r} has class {spec.resource_class!r} "
                f"outside scope {sorted(decision.authorized_scope)}",
            )

    # -------- (c) field entitlements --------
    for spec, name in references:
        missing = spec.get_field(name).sensitivity - identity.entitlements
        if missing:
            raise _reject(
                PlanValidationErrorKind.ENTITLEMENT_MISSING,
                f"field {spec.resource_id}.{name} requires {sorted(missing)}",
            )

    # -------- (d) read-only, supported shape --------
    if not isinstance(plan.operation, str) or plan.operation.strip().lower() not in READ_ONLY_OPERATIONS:
        raise _reject(
            PlanValidationErrorKind.UNSUPPORTED_OPERATION,
            f"operation {plan.operation!r} is not a read",
        )
    if len(plan.resources) > 1:
        raise _reject(
            PlanValidationErrorKind.UNSUPPORTED_OPERATION,
            "cross-resource plans are not supported",
        )
    for flt in plan.filters:
        if flt.op not in FILTER_OPERATORS:
            raise _reject(
                PlanValidationErrorKind.UNSUPPORTED_OPERATION,
                f"filter operator {flt.op!r} is not supported",
            )
        if not _is_safe_value(flt.value):
            raise _reject(
                PlanValidationErrorKind.UNSUPPORTED_OPERATION,
                f"filter value for {flt.field!r} is not a scalar",
            )
        if flt.op == "in" and not isinstance(flt.value, (list, tuple)):
            raise _reject(
                PlanValidationErrorKind.UNSUPPORTED_OPERATION,
                f"'in' filter on {flt.field!r} needs a list value",
            )
    if plan.sort_order not in SORT_ORDERS:
        raise _reject(
            PlanValidationErrorKind.UNSUPPORTED_OPERATION,
            f"sort order {plan.sort_order!r} is not supported",
        )

    agg = plan.aggregation
    if agg is not None:
        if agg.function not in AGGREGATE_FUNCTIONS:
            raise _reject(
                PlanValidationErrorKind.UNSUPPORTED_OPERATION,
                f"aggregate function {agg.function!r} is not supported",
            )
        if agg.function != "count":
            if not agg.field:
                raise _reject(
                    PlanValidationErrorKind.UNSUPPORTED_OPERATION,
                    f"aggregate {agg.function!r} needs a field",
                )
            if not primary.get_field(agg.field).is_numeric():
                raise _reject(
                    PlanValidationErrorKind.UNSUPPORTED_OPERATION,
                    f"cannot {agg.function} non-numeric field {agg.field!r}",
                )
        if plan.sort_by and plan.sort_by != aggregate_alias(agg) and plan.sort_by not in agg.group_by:
            raise _reject(
                PlanValidationErrorKind.UNSUPPORTED_OPERATION,
                f"cannot sort an aggregate by {plan.sort_by!r}",
            )

    validated = ValidatedPlan(
        _SEAL,
        plan=plan.model_copy(deep=True),
        snapshot=snapshot,
        decision=decision,
        identity=identity,
        resource=primary,
        fields=projection,
    )
    logger.info("Plan validated: %r", validated)
    return validated

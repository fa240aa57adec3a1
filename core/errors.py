# core/errors.py
"""
Error taxonomy for the gate.

Classification failures never leave the classifier. Policy violations are
DENY decisions, not exceptions. Everything else below is raised by the stage
that detects it and resolved by the orchestrator into an explicit refusal.
"""

from enum import Enum
from typing import Optional


class GateError(Exception):
    """Base class for all pipeline errors."""


class ClassificationFailure(GateError):
    """Timeout, model error or malformed classifier output."""


class PolicyTableError(GateError):
    """The policy table could not be loaded or is inconsistent."""


class CatalogError(GateError):
    """Unknown source, unknown version, or a non-monotonic publish."""


class PlanGenerationError(GateError):
    """The plan generator timed out or produced nothing usable."""


class PlanValidationErrorKind(str, Enum):
    UNKNOWN_RESOURCE = "UnknownResource"
    SCOPE_VIOLATION = "ScopeViolation"
    ENTITLEMENT_MISSING = "EntitlementMissing"
    UNSUPPORTED_OPERATION = "UnsupportedOperation"


class PlanValidationError(GateError):
    """
    A candidate plan was rejected.
    `detail` may name resources and fields: it goes to the audit trail only.
    """

    def __init__(self, kind: PlanValidationErrorKind, detail: str):
        super().__init__(f"{kind.value}: {detail}")
        self.kind = kind
        self.detail = detail


class ExecutionError(GateError):
    """Adapter, network or data-source failure while running a validated plan."""

    def __init__(self, message: str, *, source_id: Optional[str] = None):
        super().__init__(message)
        self.source_id = source_id


class TransientExecutionError(ExecutionError):
    """A failure worth exactly one retry (dropped connection, busy source)."""


class ExecutionTimeout(ExecutionError):
    """The per-request execution deadline elapsed."""

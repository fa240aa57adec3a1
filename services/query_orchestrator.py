# FILE: services/query_orchestrator.py
"""
Intent-gated query pipeline.

    Query → Classifier → Policy Engine → (Plan Generator → Validator →
    Execution Gateway) → Synthesizer

Strictly linear. Every stage writes an audit record. On DENY nothing
downstream of the policy engine is touched; on ALLOW_NO_DATA no plan is ever
built. One catalog state is pinned per request and used by validation and
execution alike.
"""

import logging
from typing import Optional

from core.decision import PolicyDecision, PolicyOutcome, ReasonCode
from core.errors import CatalogError, ExecutionError, PlanGenerationError, PlanValidationError, PlanValidationErrorKind
from models.audit import AuditStage
from models.policy import PolicyTable
from models.query import GateResponse, Query
from services.audit_trail import AuditSession, AuditTrail
from services.execution_gateway import ExecutionGateway
from services.intent_classifier import ClassifierRunner, classify
from services.plan_generator import PlanRunner, generate
from services.plan_validator import validate
from services.policy_engine import decide
from services.response_synthesizer import KnowledgeRunner, synthesize, synthesize_failure
from services.schema_catalog import SchemaCatalog
from services.utils import canonical_hash

# -----------------------------
# Logging Setup
# -----------------------------
logger = logging.getLogger("query_orchestrator")


class QueryOrchestrator:
    def __init__(
        self,
        *,
        catalog: SchemaCatalog,
        policy_table: PolicyTable,
        audit: AuditTrail,
        gateway: ExecutionGateway,
        classifier_runner: Optional[ClassifierRunner] = None,
        plan_runner: Optional[PlanRunner] = None,
        knowledge_runner: Optional[KnowledgeRunner] = None,
    ):
        self.catalog = catalog
        self.policy_table = policy_table
        self.audit = audit
        self.gateway = gateway
        self.classifier_runner = classifier_runner
        self.plan_runner = plan_runner
        self.knowledge_runner = knowledge_runner

    async def _finish(
        self,
        session: AuditSession,
        query: Query,
        text: str,
        outcome: PolicyOutcome,
        reason: ReasonCode,
    ) -> GateResponse:
        record = await session.record(
            AuditStage.RESPONSE,
            {"outcome": outcome, "reason_code": reason, "response_hash": canonical_hash(text)},
        )
        logger.info(
            "[RESPONSE] request_id=%s user_id=%s outcome=%s reason=%s",
            query.request_id,
            query.identity.user_id,
            outcome.value,
            reason.value,
        )
        return GateResponse(
            request_id=query.request_id,
            response_text=text,
            decision_outcome=outcome,
            reason_code=reason,
            audit_id=record.audit_id,
        )

    async def handle_user_query(self, query: Query) -> GateResponse:
        identity = query.identity
        session = self.audit.session(query.request_id, identity)
        pinned = self.catalog.pin()

        logger.info(
            "[REQUEST_START] request_id=%s user_id=%s text_length=%d",
            query.request_id,
            identity.user_id,
            len(query.text),
        )

        # Step 1: Classify (text + context only)
        intent = await classify(query.text, query.context, runner=self.classifier_runner)
        await session.record(
            AuditStage.CLASSIFICATION,
            {
                "category": intent.category,
                "confidence": intent.confidence,
                "rationale": intent.rationale,
                "query_hash": canonical_hash(query.text),
            },
        )

        # Step 2: Decide
        decision: PolicyDecision = decide(intent, identity, self.policy_table, pinned.version)
        await session.record(
            AuditStage.DECISION,
            {
                "outcome": decision.outcome,
                "reason_code": decision.reason_code,
                "authorized_scope": decision.authorized_scope,
                "policy_version": decision.policy_version,
                "catalog_version": decision.catalog_version,
            },
        )

        if decision.outcome is not PolicyOutcome.ALLOW_WITH_AUTH:
            text = await synthesize(decision, None, question=query.text, knowledge_runner=self.knowledge_runner)
            return await self._finish(session, query, text, decision.outcome, decision.reason_code)

        # Step 3: Generate (untrusted)
        try:
            plan = await generate(
                query,
                intent,
                decision.authorized_scope,
                hints=pinned.planning_hints(decision.authorized_scope),
                runner=self.plan_runner,
            )
        except PlanGenerationError as e:
            await session.record(AuditStage.PLAN_GENERATION, {"status": "failed", "error": str(e)})
            return await self._finish(
                session, query, synthesize_failure(e), PolicyOutcome.DENY, ReasonCode.PLAN_UNAVAILABLE
            )
        await session.record(
            AuditStage.PLAN_GENERATION,
            {
                "status": "generated",
                "source_id": plan.source_id,
                "resources": [r.resource_id for r in plan.resources],
                "plan_hash": canonical_hash(plan),
            },
        )

        # Step 4: Validate against the pinned snapshot
        try:
            try:
                snapshot = pinned.snapshot(plan.source_id)
            except CatalogError as e:
                raise PlanValidationError(PlanValidationErrorKind.UNKNOWN_RESOURCE, str(e)) from e
            validated = validate(plan, snapshot, decision, identity)
        except PlanValidationError as e:
            await session.record(
                AuditStage.VALIDATION,
                {"status": "rejected", "kind": e.kind, "detail": e.detail, "plan_hash": canonical_hash(plan)},
            )
            return await self._finish(
                session, query, synthesize_failure(e), PolicyOutcome.DENY, ReasonCode.PLAN_REJECTED
            )
        await session.record(
            AuditStage.VALIDATION,
            {
                "status": "validated",
                "source_id": validated.source_id,
                "schema_version": validated.schema_version,
                "resource": validated.resource.resource_id,
                "fields": list(validated.fields),
            },
        )

        # Step 5: Execute
        try:
            result = await self.gateway.execute(validated)
        except ExecutionError as e:
            logger.exception("[EXECUTION ERROR] request_id=%s source=%s", query.request_id, e.source_id)
            await session.record(
                AuditStage.EXECUTION,
                {"status": "failed", "error_type": type(e).__name__, "detail": str(e)},
            )
            return await self._finish(
                session, query, synthesize_failure(e), PolicyOutcome.DENY, ReasonCode.EXECUTION_FAILED
            )
        await session.record(
            AuditStage.EXECUTION,
            {
                "status": "succeeded",
                "row_count": result.row_count,
                "schema_version": result.schema_version,
                "truncated": result.truncated,
                "masked_fields": result.masked_fields,
                "result_hash": canonical_hash(result.rows),
            },
        )

        # Step 6: Synthesize
        text = await synthesize(decision, result, question=query.text)
        return await self._finish(session, query, text, decision.outcome, decision.reason_code)

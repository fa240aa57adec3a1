import asyncio

import pytest

from core.decision import PolicyDecision, PolicyOutcome, ReasonCode
from core.errors import ExecutionError
from core.intent import IntentCategory
from executors.document import DocumentAdapter
from executors.relational import RelationalAdapter, quote_identifier
from models.plan import ExecutionPlan, PlanAggregation, PlanFilter, PlanResource
from services.plan_validator import validate


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
DECISION = PolicyDecision(
    category=IntentCategory.ANALYSIS,
    outcome=PolicyOutcome.ALLOW_WITH_AUTH,
    authorized_scope=frozenset({"cost_center", "forecast"}),
    reason_code=ReasonCode.AUTHORIZED,
    policy_version="test",
)


def validated_plan(snapshot, identity, resource, fields=(), **kwargs):
    plan = ExecutionPlan(
        source_id=snapshot.source_id,
        resources=[PlanResource(resource_id=resource, fields=list(fields))],
        **kwargs,
    )
    return validate(plan, snapshot, DECISION, identity)


# ---------------------------------------------------------------------
# TESTS: RELATIONAL TRANSLATION
# ---------------------------------------------------------------------

def test_filters_become_bound_parameters(fake_db, budget_snapshot, analyst):
    plan = validated_plan(
        budget_snapshot,
        analyst,
        "cost_center_budget",
        fields=("cost_center_id", "variance"),
        filters=[
            PlanFilter(field="cost_center_id", op="eq", value=101),
            PlanFilter(field="period", op="in", value=["2026-08", "2026-09"]),
        ],
        sort_by="variance",
        sort_order="asc",
    )

    sql, params, limit = RelationalAdapter(fake_db).translate(plan)

    assert sql == (
        'SELECT "cost_center_id", "variance" FROM "cost_center_budget" '
        'WHERE "cost_center_id" = $1 AND "period" IN ($2, $3) ORDER BY "variance" ASC'
    )
    assert params == [101, "2026-08", "2026-09"]
    assert limit == 100


def test_hostile_value_never_reaches_sql_text(fake_db, budget_snapshot, analyst):
    payload = "101; DROP TABLE cost_center_budget; --"
    plan = validated_plan(
        budget_snapshot,
        analyst,
        "cost_center_budget",
        fields=("variance",),
        filters=[PlanFilter(field="period", op="contains", value=payload)],
    )

    sql, params, _ = RelationalAdapter(fake_db).translate(plan)

    assert "DROP" not in sql
    assert params == [f"%{payload}%"]


def test_grouped_aggregate_translation(fake_db, budget_snapshot, analyst):
    plan = validated_plan(
        budget_snapshot,
        analyst,
        "cost_center_budget",
        aggregation=PlanAggregation(function="sum", field="variance", group_by=["period"]),
        sort_by="sum_variance",
    )

    sql, params, _ = RelationalAdapter(fake_db).translate(plan)

    assert sql == (
        'SELECT "period", SUM("variance") AS "sum_variance" FROM "cost_center_budget" '
        'GROUP BY "period" ORDER BY "sum_variance" DESC'
    )
    assert params == []


def test_null_equality_uses_is_null(fake_db, budget_snapshot, analyst):
    plan = validated_plan(
        budget_snapshot,
        analyst,
        "cost_center_budget",
        fields=("variance",),
        filters=[PlanFilter(field="actual", op="eq", value=None)],
    )

    sql, params, _ = RelationalAdapter(fake_db).translate(plan)

    assert sql.endswith('WHERE "actual" IS NULL')
    assert params == []


@pytest.mark.parametrize("name", ['cost"center', "a b", "1table", "x;y", ""])
def test_unusual_identifiers_are_refused(name):
    with pytest.raises(ExecutionError):
        quote_identifier(name)


def test_schema_qualified_identifier_is_quoted():
    assert quote_identifier("finance.cost_center_budget") == '"finance"."cost_center_budget"'


# ---------------------------------------------------------------------
# TESTS: DOCUMENT SOURCE
# ---------------------------------------------------------------------

def test_document_find_with_filter_and_projection(document_store, forecast_snapshot, analyst):
    plan = validated_plan(
        forecast_snapshot,
        analyst,
        "forecasts",
        fields=("period", "forecast_amount"),
        filters=[PlanFilter(field="cost_center_id", op="eq", value=101)],
        sort_by="period",
        sort_order="asc",
    )
    adapter = DocumentAdapter(document_store)

    rows = asyncio.run(adapter.run(adapter.translate(plan), max_rows=50))

    assert [r["period"] for r in rows] == ["2026-07", "2026-08", "2026-09"]
    assert all(set(r) == {"period", "forecast_amount"} for r in rows)


def test_document_grouped_aggregate(document_store, forecast_snapshot, analyst):
    plan = validated_plan(
        forecast_snapshot,
        analyst,
        "forecasts",
        aggregation=PlanAggregation(function="sum", field="forecast_amount", group_by=["cost_center_id"]),
        sort_by="sum_forecast_amount",
    )
    adapter = DocumentAdapter(document_store)

    rows = asyncio.run(adapter.run(adapter.translate(plan), max_rows=50))

    assert rows[0] == {"cost_center_id": 101, "sum_forecast_amount": 358750.0}
    assert [r["cost_center_id"] for r in rows] == [101, 310, 205]


def test_document_count_without_groups(document_store, forecast_snapshot, analyst):
    plan = validated_plan(
        forecast_snapshot,
        analyst,
        "forecasts",
        aggregation=PlanAggregation(function="count"),
        filters=[PlanFilter(field="forecast_amount", op="gte", value=100000)],
    )
    adapter = DocumentAdapter(document_store)

    rows = asyncio.run(adapter.run(adapter.translate(plan), max_rows=50))

    assert rows == [{"count": 4}]


def test_document_row_cap_applies(document_store, forecast_snapshot, analyst):
    plan = validated_plan(forecast_snapshot, analyst, "forecasts", fields=("period",))
    adapter = DocumentAdapter(document_store)

    rows = asyncio.run(adapter.run(adapter.translate(plan), max_rows=2))

    assert len(rows) == 2

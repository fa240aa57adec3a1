import pytest

from core.decision import PolicyOutcome, ReasonCode
from core.intent import Intent, IntentCategory
from models.policy import PolicyTable
from models.query import Identity
from services.policy_engine import decide, resolve_scope


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------
def make_intent(category, confidence=0.9):
    return Intent(category=category, confidence=confidence, rationale="test")


# ---------------------------------------------------------------------
# TESTS: OUTCOMES
# ---------------------------------------------------------------------

def test_safe_knowledge_is_allowed_without_data(policy_table, guest):
    decision = decide(make_intent(IntentCategory.SAFE_KNOWLEDGE), guest, policy_table, 3)

    assert decision.outcome == PolicyOutcome.ALLOW_NO_DATA
    assert decision.reason_code == ReasonCode.SAFE_KNOWLEDGE
    assert decision.authorized_scope == frozenset()
    assert decision.catalog_version == 3
    assert decision.policy_version == policy_table.version


def test_data_query_with_role_is_allowed_with_scope(policy_table, analyst):
    decision = decide(make_intent(IntentCategory.DATA_QUERY), analyst, policy_table)

    assert decision.outcome == PolicyOutcome.ALLOW_WITH_AUTH
    assert decision.reason_code == ReasonCode.AUTHORIZED
    assert decision.authorized_scope == frozenset({"cost_center"})
    assert decision.allows_data()


def test_data_query_without_role_is_denied(policy_table, guest):
    decision = decide(make_intent(IntentCategory.DATA_QUERY, 0.95), guest, policy_table)

    assert decision.outcome == PolicyOutcome.DENY
    assert decision.reason_code == ReasonCode.INSUFFICIENT_ENTITLEMENT
    assert decision.authorized_scope == frozenset()


def test_out_of_scope_is_denied_for_every_identity(policy_table, analyst, pii_analyst, guest):
    for identity in (analyst, pii_analyst, guest):
        decision = decide(make_intent(IntentCategory.OUT_OF_SCOPE, 1.0), identity, policy_table)
        assert decision.outcome == PolicyOutcome.DENY
        assert decision.reason_code == ReasonCode.OUT_OF_SCOPE


@pytest.mark.parametrize("confidence", [0.0, 0.3, 0.59])
def test_low_confidence_is_denied(policy_table, analyst, confidence):
    decision = decide(make_intent(IntentCategory.DATA_QUERY, confidence), analyst, policy_table)

    assert decision.outcome == PolicyOutcome.DENY
    assert decision.reason_code == ReasonCode.LOW_CONFIDENCE_OR_UNKNOWN


def test_confidence_at_threshold_is_enough(policy_table, analyst):
    decision = decide(make_intent(IntentCategory.DATA_QUERY, 0.6), analyst, policy_table)
    assert decision.outcome == PolicyOutcome.ALLOW_WITH_AUTH


def test_low_confidence_safe_knowledge_is_denied(policy_table, guest):
    decision = decide(make_intent(IntentCategory.SAFE_KNOWLEDGE, 0.2), guest, policy_table)
    assert decision.reason_code == ReasonCode.LOW_CONFIDENCE_OR_UNKNOWN


def test_category_missing_from_table_is_denied(analyst):
    table = PolicyTable(version="t1", entries={"SAFE_KNOWLEDGE": {}})

    decision = decide(make_intent(IntentCategory.ANALYSIS), analyst, table)

    assert decision.outcome == PolicyOutcome.DENY
    assert decision.reason_code == ReasonCode.LOW_CONFIDENCE_OR_UNKNOWN


def test_entry_flagged_out_of_scope_is_denied(analyst):
    table = PolicyTable(version="t1", entries={"ANALYSIS": {"out_of_scope": True}})

    decision = decide(make_intent(IntentCategory.ANALYSIS), analyst, table)

    assert decision.reason_code == ReasonCode.OUT_OF_SCOPE


# ---------------------------------------------------------------------
# TESTS: SCOPE RESOLUTION
# ---------------------------------------------------------------------

def test_role_grant_narrows_scope(policy_table, contractor):
    decision = decide(make_intent(IntentCategory.ANALYSIS), contractor, policy_table)

    assert decision.outcome == PolicyOutcome.ALLOW_WITH_AUTH
    assert decision.authorized_scope == frozenset({"forecast"})


def test_overlapping_grants_most_restrictive_wins():
    table = PolicyTable(
        version="t1",
        entries={"DATA_QUERY": {"required_roles": ["analyst"], "resource_classes": ["a", "b", "c"]}},
        role_grants={"analyst": ["a", "b"], "auditor": ["b", "c"]},
    )
    identity = Identity(user_id="u1", roles={"analyst", "auditor"})

    scope = resolve_scope(table.entry_for(IntentCategory.DATA_QUERY), identity, table)

    assert scope == frozenset({"b"})


def test_disjoint_grants_end_in_empty_scope_denial():
    table = PolicyTable(
        version="t1",
        entries={"DATA_QUERY": {"required_roles": ["analyst"], "resource_classes": ["a"]}},
        role_grants={"analyst": ["z"]},
    )
    identity = Identity(user_id="u1", roles={"analyst"})

    decision = decide(make_intent(IntentCategory.DATA_QUERY), identity, table)

    assert decision.outcome == PolicyOutcome.DENY
    assert decision.reason_code == ReasonCode.EMPTY_SCOPE


# ---------------------------------------------------------------------
# TESTS: PURITY
# ---------------------------------------------------------------------

def test_decision_is_deterministic(policy_table, analyst):
    intent = make_intent(IntentCategory.ANALYSIS, 0.81)

    decisions = {decide(intent, analyst, policy_table, 3) for _ in range(20)}

    assert len(decisions) == 1


def test_decision_is_immutable(policy_table, analyst):
    decision = decide(make_intent(IntentCategory.DATA_QUERY), analyst, policy_table)

    with pytest.raises(Exception):
        decision.outcome = PolicyOutcome.DENY


def test_grant_outside_category_classes_empties_scope(policy_table, contractor):
    decision = decide(make_intent(IntentCategory.DATA_QUERY), contractor, policy_table)

    assert decision.outcome == PolicyOutcome.DENY
    assert decision.reason_code == ReasonCode.EMPTY_SCOPE

# services/policy_engine.py

from typing import FrozenSet, Optional

from core.decision import PolicyDecision, PolicyOutcome, ReasonCode
from core.intent import Intent, IntentCategory
from models.policy import PolicyEntry, PolicyTable
from models.query import Identity


# ---------------------------------------------------------------------
# Policy Decision (PURE, DETERMINISTIC)
# ---------------------------------------------------------------------
def decide(
    intent: Intent,
    identity: Identity,
    policy_table: PolicyTable,
    catalog_version: Optional[int] = None,
) -> PolicyDecision:
    """
    Turns an advisory intent into the single access verdict for a query.

    Rules:
    - No LLM calls
    - No network, no catalog access
    - Same inputs, same decision
    - Every input combination ends in exactly one branch
    """

    category = intent.category
    entry = policy_table.entry_for(category)

    def verdict(outcome, reason, scope: FrozenSet[str] = frozenset()) -> PolicyDecision:
        return PolicyDecision(
            category=category,
            outcome=outcome,
            authorized_scope=scope,
            reason_code=reason,
            policy_version=policy_table.version,
            catalog_version=catalog_version,
        )

    # -------------------------------------------------
    # OUT OF SCOPE: no role, no confidence can lift it
    # -------------------------------------------------
    if category is IntentCategory.OUT_OF_SCOPE or (entry is not None and entry.out_of_scope):
        return verdict(PolicyOutcome.DENY, ReasonCode.OUT_OF_SCOPE)

    # -------------------------------------------------
    # UNKNOWN CATEGORY / LOW CONFIDENCE
    # `not >=` also catches NaN
    # -------------------------------------------------
    if entry is None or not intent.confidence >= policy_table.confidence_threshold:
        return verdict(PolicyOutcome.DENY, ReasonCode.LOW_CONFIDENCE_OR_UNKNOWN)

    # -------------------------------------------------
    # SAFE KNOWLEDGE: answer, but never touch data
    # -------------------------------------------------
    if category is IntentCategory.SAFE_KNOWLEDGE:
        return verdict(PolicyOutcome.ALLOW_NO_DATA, ReasonCode.SAFE_KNOWLEDGE)

    # -------------------------------------------------
    # ROLE CHECK
    # -------------------------------------------------
    if not entry.required_roles <= identity.roles:
        return verdict(PolicyOutcome.DENY, ReasonCode.INSUFFICIENT_ENTITLEMENT)

    # -------------------------------------------------
    # DATA CATEGORIES
    # -------------------------------------------------
    if category.touches_data():
        scope = resolve_scope(entry, identity, policy_table)
        if not scope:
            return verdict(PolicyOutcome.DENY, ReasonCode.EMPTY_SCOPE)
        return verdict(PolicyOutcome.ALLOW_WITH_AUTH, ReasonCode.AUTHORIZED, scope)

    # -------------------------------------------------
    # DEFAULT: registered but no allow rule
    # -------------------------------------------------
    return verdict(PolicyOutcome.DENY, ReasonCode.NO_MATCHING_RULE)


def resolve_scope(entry: PolicyEntry, identity: Identity, policy_table: PolicyTable) -> FrozenSet[str]:
    """
    Category resource classes, narrowed by every role grant the identity holds.
    Overlapping grants intersect: the most restrictive wins.
    """
    scope = frozenset(entry.resource_classes)
    for role in sorted(identity.roles):
        grant = policy_table.role_grants.get(role)
        if grant is not None:
            scope = scope & grant
    return scope

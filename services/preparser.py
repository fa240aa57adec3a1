# FILE: services/preparser.py
"""
Deterministic extractions used when the language-model agents are off
(test mode, no model key). Same contracts as the agents: an intent label with
a confidence, and an untrusted candidate plan.
"""

import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from agents.intent_agent import RawIntent
from models.plan import ExecutionPlan, PlanAggregation, PlanFilter, PlanResource

# Prompt-injection and privilege phrasing (always out of scope)
INJECTION_PATTERNS = [
    r"\bignore\b.*\b(rules?|instructions?|polic(?:y|ies)|restrictions?|permissions?|guardrails?)\b",
    r"\bbypass\b",
    r"\boverride\b.*\b(access|security|polic(?:y|ies)|permissions?)\b",
    r"\bdisable\b.*\b(security|filters?|masking|audit)\b",
    r"\bpretend (?:you are|to be)\b",
    r"\bjailbreak\b",
    r"\bact as (?:an? )?(?:admin|administrator|root|dba)\b",
]

# Anything that would change data
WRITE_PATTERNS = [
    r"\b(?:delete|drop|truncate|insert|alter|grant|revoke)\b",
    r"\bupdate\b.*\bset\b",
]

ENTITY_PATTERNS = [
    r"\bcost cent(?:er|re)s?\b",
    r"\bbudgets?\b",
    r"\bactuals?\b",
    r"\bforecasts?\b",
    r"\bheadcount\b",
    r"\bsalar(?:y|ies)\b",
    r"\bjournals?\b",
    r"\bledger\b",
    r"\baccounts?\b",
    r"\bdepartments?\b",
]

DATA_VERB_PATTERNS = [
    r"\b(?:show|list|give me|fetch|display|pull|get|find)\b",
    r"\bhow much\b",
]

ANALYSIS_PATTERNS = [
    r"\bcompare\b",
    r"\btrends?\b",
    r"\bbreak ?down\b",
    r"\bover time\b",
    r"\bby (?:month|quarter|period|year)\b",
    r"\banaly[sz](?:e|is)\b",
    r"\btop \d+\b",
]

KNOWLEDGE_PATTERNS = [
    r"^\s*(?:what|who|why|how)\s+(?:is|are|does|do|should|can)\b",
    r"\b(?:define|definition|meaning of|explain|difference between)\b",
]

IDENTIFIER_RE = re.compile(r"\b\d{2,}\b")
PERIOD_RE = re.compile(r"\b(20\d{2}-(?:0[1-9]|1[0-2]))\b")

AGGREGATE_KEYWORDS = [
    ("count", r"\b(?:how many|count|number of)\b"),
    ("sum", r"\b(?:total|sum of|sum)\b"),
    ("avg", r"\b(?:average|avg|mean)\b"),
    ("max", r"\b(?:highest|maximum|max|largest)\b"),
    ("min", r"\b(?:lowest|minimum|min|smallest)\b"),
]


def _any(patterns: Sequence[str], text: str) -> bool:
    return any(re.search(p, text) for p in patterns)


# -----------------------------
# Intent
# -----------------------------
def heuristic_intent(text: str) -> RawIntent:
    lowered = (text or "").lower()

    if _any(INJECTION_PATTERNS, lowered):
        return RawIntent(category="OUT_OF_SCOPE", confidence=0.95, rationale="access-rule manipulation")
    if _any(WRITE_PATTERNS, lowered):
        return RawIntent(category="OUT_OF_SCOPE", confidence=0.9, rationale="data modification request")

    has_entity = _any(ENTITY_PATTERNS, lowered)
    has_verb = _any(DATA_VERB_PATTERNS, lowered)
    has_identifier = bool(IDENTIFIER_RE.search(lowered))

    if has_entity and _any(ANALYSIS_PATTERNS, lowered):
        return RawIntent(category="ANALYSIS", confidence=0.8, rationale="analysis over enterprise data")
    if has_entity and (has_verb or has_identifier):
        return RawIntent(category="DATA_QUERY", confidence=0.85, rationale="lookup of enterprise records")
    if _any(KNOWLEDGE_PATTERNS, lowered):
        return RawIntent(category="SAFE_KNOWLEDGE", confidence=0.9, rationale="general concept question")

    return RawIntent(category="OUT_OF_SCOPE", confidence=0.3, rationale="no recognised intent")


# -----------------------------
# Plan
# -----------------------------
def field_label(name: str) -> str:
    """`cost_center_id` → `cost center`."""
    base = name[:-3] if name.endswith("_id") else name
    return base.replace("_", " ").strip()


def _mentions(label: str, lowered: str) -> bool:
    return bool(label) and re.search(rf"\b{re.escape(label)}(?:s|es)?\b", lowered) is not None


def _identifier_value(label: str, lowered: str) -> Optional[Any]:
    m = re.search(rf"\b{re.escape(label)}s?\s+(?:#|no\.?\s*|number\s+)?([0-9][a-z0-9-]*)\b", lowered)
    if not m:
        return None
    raw = m.group(1)
    return int(raw) if raw.isdigit() else raw


def _score_resource(resource: Dict[str, Any], lowered: str) -> Tuple[int, List[str]]:
    mentioned = [f["name"] for f in resource["fields"] if _mentions(field_label(f["name"]), lowered)]
    score = len(mentioned)
    if _mentions(field_label(resource["resource_id"]), lowered):
        score += 1
    return score, mentioned


def heuristic_plan(text: str, hints: Sequence[Dict[str, Any]]) -> Optional[ExecutionPlan]:
    """
    Pick the best-matching resource from the planning hints and build a
    candidate plan. Returns None when nothing in the hints matches.
    """
    lowered = (text or "").lower()

    best = None
    for source in hints:
        for resource in source["resources"]:
            score, mentioned = _score_resource(resource, lowered)
            if score > 0 and (best is None or score > best[0]):
                best = (score, source, resource, mentioned)
    if best is None:
        return None

    _, source, resource, mentioned = best
    types = {f["name"]: f.get("type", "string") for f in resource["fields"]}

    # -------- Filters --------
    filters: List[PlanFilter] = []
    for name in types:
        if name.endswith("_id"):
            value = _identifier_value(field_label(name), lowered)
            if value is not None:
                filters.append(PlanFilter(field=name, op="eq", value=value))
    period = PERIOD_RE.search(lowered)
    if period and "period" in types:
        filters.append(PlanFilter(field="period", op="eq", value=period.group(1)))

    # -------- Aggregation --------
    aggregation = None
    numeric = [n for n in mentioned if types[n].lower() in ("int", "integer", "float", "decimal", "number", "numeric") and not n.endswith("_id")]
    for function, pattern in AGGREGATE_KEYWORDS:
        if re.search(pattern, lowered):
            if function != "count" and not numeric:
                continue
            group_by = [
                n for n in types
                if re.search(rf"\b(?:by|per) {re.escape(field_label(n))}\b", lowered)
            ]
            aggregation = PlanAggregation(
                function=function,
                field=None if function == "count" else numeric[0],
                group_by=group_by,
            )
            break

    return ExecutionPlan(
        source_id=source["source_id"],
        operation="read",
        resources=[PlanResource(resource_id=resource["resource_id"], fields=[] if aggregation else mentioned)],
        filters=filters,
        aggregation=aggregation,
    )

"""
Document adapter: ValidatedPlan → Mongo-style filter/projection, run against
any store that implements DocumentStore.find(). Aggregation and grouping
happen Python-side over the matched documents.
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Tuple, Union

from core.errors import ExecutionError
from executors.base import SourceAdapter, compute_aggregate
from models.plan import aggregate_alias
from models.schema import SourceFamily
from services.plan_validator import ValidatedPlan

logger = logging.getLogger("document_adapter")

_OPERATORS = {
    "eq": "$eq",
    "ne": "$ne",
    "gt": "$gt",
    "gte": "$gte",
    "lt": "$lt",
    "lte": "$lte",
    "in": "$in",
    "contains": "$contains",
}


class DocumentStore(Protocol):
    async def find(
        self,
        collection: str,
        filter: Dict[str, Dict[str, Any]],
        projection: Optional[List[str]],
        sort: Optional[Tuple[str, int]],
        limit: Optional[int],
    ) -> List[Dict[str, Any]]: ...


# -----------------------------
# In-memory store (fixtures, tests, small reference sets)
# -----------------------------
def _matches(doc: Dict[str, Any], field: str, op: str, value: Any) -> bool:
    actual = doc.get(field)
    if op == "$eq":
        return actual == value
    if op == "$ne":
        return actual != value
    if op == "$in":
        return actual in value
    if op == "$contains":
        return actual is not None and str(value).lower() in str(actual).lower()
    if actual is None or value is None:
        return False
    try:
        if op == "$gt":
            return actual > value
        if op == "$gte":
            return actual >= value
        if op == "$lt":
            return actual < value
        if op == "$lte":
            return actual <= value
    except TypeError:
        return False
    raise ExecutionError(f"Unsupported document operator {op!r}")


class InMemoryDocumentStore:
    def __init__(self, collections: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._collections = {name: [dict(d) for d in docs] for name, docs in (collections or {}).items()}

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "InMemoryDocumentStore":
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        return cls(raw.get("collections", {}))

    async def find(self, collection, filter, projection, sort, limit):
        if collection not in self._collections:
            raise ExecutionError(f"Unknown collection {collection!r}")

        docs = [
            d
            for d in self._collections[collection]
            if all(_matches(d, field, op, value) for field, ops in filter.items() for op, value in ops.items())
        ]
        if sort is not None:
            key, direction = sort
            docs.sort(key=lambda d: (d.get(key) is None, d.get(key)), reverse=direction < 0)
        if limit is not None:
            docs = docs[:limit]
        if projection is not None:
            docs = [{k: d.get(k) for k in projection if k in d} for d in docs]
        return docs


# -----------------------------
# Adapter
# -----------------------------
class DocumentAdapter(SourceAdapter):
    family = SourceFamily.DOCUMENT

    def __init__(self, store: DocumentStore):
        self.store = store

    def translate(self, plan: ValidatedPlan) -> Dict[str, Any]:
        p = plan.plan
        filter_doc: Dict[str, Dict[str, Any]] = {}
        for flt in p.filters:
            value = list(flt.value) if isinstance(flt.value, tuple) else flt.value
            filter_doc.setdefault(flt.field, {})[_OPERATORS[flt.op]] = value

        native: Dict[str, Any] = {
            "collection": plan.resource.resource_id,
            "filter": filter_doc,
            "projection": list(plan.fields),
            "sort": (p.sort_by, -1 if p.sort_order == "desc" else 1) if p.sort_by else None,
            "limit": p.limit,
            "aggregation": None,
        }

        if p.aggregation is not None:
            agg = p.aggregation
            needed = list(dict.fromkeys([*agg.group_by, *([agg.field] if agg.field else [])]))
            native["projection"] = needed
            native["sort"] = None
            native["aggregation"] = {
                "function": agg.function,
                "field": agg.field,
                "group_by": list(agg.group_by),
                "alias": aggregate_alias(agg),
                "sort_by": p.sort_by,
                "descending": p.sort_order == "desc",
            }
        return native

    async def run(self, native_query: Dict[str, Any], *, max_rows: int) -> List[Dict[str, Any]]:
        agg = native_query["aggregation"]
        logger.info(
            "Running document query collection=%s filter_fields=%s aggregate=%s",
            native_query["collection"],
            sorted(native_query["filter"]),
            bool(agg),
        )

        try:
            docs = await self.store.find(
                native_query["collection"],
                native_query["filter"],
                native_query["projection"],
                native_query["sort"],
                None if agg else min(native_query["limit"], max_rows),
            )
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(f"Document query failed: {e}") from e

        if not agg:
            return docs

        # -------- Group-by (Python-side) --------
        groups: Dict[Tuple[Any, ...], List[Dict[str, Any]]] = {}
        for d in docs:
            key = tuple(d.get(f) for f in agg["group_by"])
            groups.setdefault(key, []).append(d)
        if not groups and not agg["group_by"]:
            groups[()] = []

        results: List[Dict[str, Any]] = []
        for key, items in groups.items():
            g = {agg["group_by"][i]: key[i] for i in range(len(key))}
            g[agg["alias"]] = compute_aggregate(items, agg["function"], agg["field"])
            results.append(g)

        if agg["sort_by"]:
            sort_key = agg["sort_by"]
            results.sort(key=lambda r: (r.get(sort_key) is None, r.get(sort_key)), reverse=agg["descending"])

        return results[: min(native_query["limit"], max_rows)]

"""
Relational adapter: ValidatedPlan → parameterised SELECT, run through a
Prisma client's raw query API inside a read-only transaction.
"""

import asyncio
import logging
import re
from typing import TYPE_CHECKING, Any, Dict, List, Tuple

from core.errors import ExecutionError, TransientExecutionError
from executors.base import SourceAdapter
from models.plan import aggregate_alias
from models.schema import SourceFamily
from services.plan_validator import ValidatedPlan

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger("relational_adapter")

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_COMPARISONS = {
    "eq": "=",
    "ne": "<>",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
}

_AGGREGATES = {"sum": "SUM", "avg": "AVG", "count": "COUNT", "min": "MIN", "max": "MAX"}


def quote_identifier(name: str) -> str:
    """Quote `table` or `schema.table`. Anything unusual is refused."""
    parts = name.split(".")
    for part in parts:
        if not _IDENTIFIER_RE.match(part):
            raise ExecutionError(f"Refusing to quote identifier {name!r}")
    return ".".join(f'"{part}"' for part in parts)


class RelationalAdapter(SourceAdapter):
    family = SourceFamily.RELATIONAL

    def __init__(self, db: "Prisma"):
        self.db = db

    # -----------------------------
    # translate
    # -----------------------------
    def translate(self, plan: ValidatedPlan) -> Tuple[str, List[Any], int]:
        p = plan.plan
        params: List[Any] = []

        def bind(value: Any) -> str:
            params.append(value)
            return f"${len(params)}"

        table = quote_identifier(plan.resource.resource_id)

        # -------- SELECT list --------
        select: List[str] = [quote_identifier(f) for f in plan.fields]
        if p.aggregation is not None:
            func = _AGGREGATES[p.aggregation.function]
            target = quote_identifier(p.aggregation.field) if p.aggregation.field else "*"
            select.append(f"{func}({target}) AS {quote_identifier(aggregate_alias(p.aggregation))}")

        sql = f"SELECT {', '.join(select)} FROM {table}"

        # -------- WHERE --------
        clauses: List[str] = []
        for flt in p.filters:
            column = quote_identifier(flt.field)
            if flt.op in _COMPARISONS:
                if flt.value is None and flt.op in ("eq", "ne"):
                    clauses.append(f"{column} IS {'NOT ' if flt.op == 'ne' else ''}NULL")
                else:
                    clauses.append(f"{column} {_COMPARISONS[flt.op]} {bind(flt.value)}")
            elif flt.op == "in":
                placeholders = ", ".join(bind(v) for v in flt.value)
                clauses.append(f"{column} IN ({placeholders})" if placeholders else "FALSE")
            elif flt.op == "contains":
                clauses.append(f"CAST({column} AS TEXT) ILIKE {bind('%' + str(flt.value) + '%')}")
            else:
                raise ExecutionError(f"Unsupported operator {flt.op!r}")
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)

        # -------- GROUP BY / ORDER BY --------
        if p.aggregation is not None and p.aggregation.group_by:
            sql += " GROUP BY " + ", ".join(quote_identifier(g) for g in p.aggregation.group_by)
        if p.sort_by:
            sql += f" ORDER BY {quote_identifier(p.sort_by)} {p.sort_order.upper()}"

        return sql, params, p.limit

    # -----------------------------
    # run
    # -----------------------------
    async def run(self, native_query: Tuple[str, List[Any], int], *, max_rows: int) -> List[Dict[str, Any]]:
        sql, params, limit = native_query
        sql = f"{sql} LIMIT {int(min(limit, max_rows))}"
        logger.info("Running relational query: %s params=%d", sql, len(params))

        try:
            async with self.db.tx() as tx:
                await tx.execute_raw("SET TRANSACTION READ ONLY")
                rows = await tx.query_raw(sql, *params)
        except asyncio.CancelledError:
            logger.warning("Relational query cancelled; transaction rolled back")
            raise
        except (ConnectionError, OSError) as e:
            raise TransientExecutionError(f"Connection failure: {e}") from e
        except Exception as e:
            raise ExecutionError(f"Relational query failed: {e}") from e

        return [dict(r) for r in rows]

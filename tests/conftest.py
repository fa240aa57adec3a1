# tests/conftest.py
import sys
import os
from pathlib import Path

# ---------------------------------------------------------
# Ensure project root is on PYTHONPATH BEFORE app imports
# ---------------------------------------------------------
PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

# Language-model agents must never be called from tests
os.environ["GATE_TEST_MODE"] = "1"

# ---------------------------------------------------------
# Now safe to import app + dependencies
# ---------------------------------------------------------
import asyncio
from typing import Any, Dict, List, Optional

import pytest

from executors.document import DocumentAdapter, InMemoryDocumentStore
from executors.relational import RelationalAdapter
from models.policy import load_policy_table
from models.query import Identity
from services.audit_trail import AuditTrail, InMemoryAuditSink
from services.execution_gateway import ExecutionGateway
from services.query_orchestrator import QueryOrchestrator
from services.schema_catalog import load_catalog

DATA_DIR = PROJECT_ROOT / "data"

# ---------------------------------------------------------
# Prisma double: tx() context, execute_raw, query_raw
# ---------------------------------------------------------
class FakeTransaction:
    def __init__(self, db: "FakePrismaDB"):
        self.db = db

    async def execute_raw(self, sql: str, *params: Any) -> int:
        self.db.statements.append(sql)
        return 0

    async def query_raw(self, sql: str, *params: Any) -> List[Dict[str, Any]]:
        self.db.statements.append(sql)
        self.db.queries.append((sql, list(params)))
        self.db.calls += 1

        if self.db.delay:
            await asyncio.sleep(self.db.delay)
        if self.db.failures:
            raise self.db.failures.pop(0)
        return [dict(r) for r in self.db.rows]


class _TxContext:
    def __init__(self, db: "FakePrismaDB"):
        self.db = db

    async def __aenter__(self) -> FakeTransaction:
        self.db.transactions += 1
        return FakeTransaction(self.db)

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if exc_type is not None:
            self.db.rollbacks += 1
        return False


class FakePrismaDB:
    def __init__(
        self,
        rows: Optional[List[Dict[str, Any]]] = None,
        *,
        failures: Optional[List[Exception]] = None,
        delay: float = 0.0,
    ):
        self.rows = rows or []
        self.failures = list(failures or [])
        self.delay = delay
        self.statements: List[str] = []
        self.queries: List[tuple] = []
        self.calls = 0
        self.transactions = 0
        self.rollbacks = 0

    def tx(self) -> _TxContext:
        return _TxContext(self)


BUDGET_ROWS = [
    {"cost_center_id": 101, "period": "2026-08", "budget": 120000.0, "actual": 131500.0,
     "variance": -11500.0, "manager_email": "p.shah@example.com"},
    {"cost_center_id": 101, "period": "2026-09", "budget": 120000.0, "actual": 117200.0,
     "variance": 2800.0, "manager_email": "p.shah@example.com"},
]


@pytest.fixture(autouse=True)
def offline_models(monkeypatch):
    monkeypatch.setenv("GATE_TEST_MODE", "1")


# ---------------------------------------------------------
# Catalog + policy
# ---------------------------------------------------------
@pytest.fixture
def catalog():
    return load_catalog(DATA_DIR / "schema_catalog.json")


@pytest.fixture
def policy_table():
    return load_policy_table(DATA_DIR / "policy_table.json")


@pytest.fixture
def budget_snapshot(catalog):
    return catalog.get_snapshot("finance_dw")


@pytest.fixture
def forecast_snapshot(catalog):
    return catalog.get_snapshot("planning_docs")


# ---------------------------------------------------------
# Identities
# ---------------------------------------------------------
@pytest.fixture
def analyst():
    return Identity(user_id="u-analyst", roles={"analyst"})


@pytest.fixture
def pii_analyst():
    return Identity(user_id="u-hr", roles={"analyst"}, entitlements={"pii"})


@pytest.fixture
def guest():
    return Identity(user_id="u-guest", roles={"guest"})


@pytest.fixture
def contractor():
    return Identity(user_id="u-contractor", roles={"analyst", "contractor"})


# ---------------------------------------------------------
# Sources + pipeline
# ---------------------------------------------------------
@pytest.fixture
def fake_db():
    return FakePrismaDB(rows=[dict(r) for r in BUDGET_ROWS])


@pytest.fixture
def document_store():
    return InMemoryDocumentStore.from_file(DATA_DIR / "documents.json")


@pytest.fixture
def audit_sink():
    return InMemoryAuditSink()


@pytest.fixture
def gateway(fake_db, document_store):
    return ExecutionGateway(
        {
            "finance_dw": RelationalAdapter(fake_db),
            "planning_docs": DocumentAdapter(document_store),
        },
        timeout=2,
        retry_backoff=0,
    )


@pytest.fixture
def orchestrator(catalog, policy_table, audit_sink, gateway):
    return QueryOrchestrator(
        catalog=catalog,
        policy_table=policy_table,
        audit=AuditTrail(audit_sink),
        gateway=gateway,
    )

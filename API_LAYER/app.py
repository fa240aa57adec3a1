# app.py
import asyncio
import logging
import json
import os
from typing import Any, Dict, Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from asyncio import Lock

from config import (
    AUDIT_API_TOKEN,
    AUDIT_LOG_PATH,
    DATABASE_URL,
    DEBUG,
    DOCUMENT_STORE_PATH,
    POLICY_TABLE_PATH,
    REQUEST_TIMEOUT_S,
    SCHEMA_CATALOG_PATH,
)
from core.decision import PolicyOutcome
from executors.document import DocumentAdapter, InMemoryDocumentStore
from executors.relational import RelationalAdapter
from models.policy import load_policy_table
from models.query import GateRequest, GateResponse
from models.schema import SourceFamily
from services.audit_trail import AuditTrail, InMemoryAuditSink, JsonlAuditSink, verify_chain
from services.execution_gateway import ExecutionGateway
from services.query_orchestrator import QueryOrchestrator
from services.schema_catalog import load_catalog
from services.utils import deep_serialize


# -----------------------------
# Structured Logging Setup
# -----------------------------
class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(
            {
                "time": self.formatTime(record, self.datefmt),
                "level": record.levelname,
                "name": record.name,
                "message": record.getMessage(),
                "exception": record.exc_text,
            }
        )


logger = logging.getLogger("intent_gate_api")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(JSONFormatter())
if not logger.handlers:
    logger.addHandler(handler)

# -----------------------------
# FastAPI App
# -----------------------------
app = FastAPI(title="Intent Gate API", version="1.0")

# -----------------------------
# Pipeline (Lifecycle managed)
# -----------------------------
orchestrator: Optional[QueryOrchestrator] = None
db = None

DB_CONNECTED: bool = False
DB_ERROR: Optional[str] = None
STARTUP_ERROR: Optional[str] = None

# -----------------------------
# Metrics
# -----------------------------
metrics_lock = Lock()
request_counters = {
    "total": 0,
    "allow_no_data": 0,
    "allow_with_auth": 0,
    "deny": 0,
    "errors": 0,
    "timeouts": 0,
}

_OUTCOME_COUNTERS = {
    PolicyOutcome.ALLOW_NO_DATA: "allow_no_data",
    PolicyOutcome.ALLOW_WITH_AUTH: "allow_with_auth",
    PolicyOutcome.DENY: "deny",
}


async def _bump(counter: str) -> None:
    async with metrics_lock:
        request_counters[counter] += 1


# -----------------------------
# Failure envelope
# -----------------------------
_ERROR_TYPES = {
    400: "bad_request",
    403: "forbidden",
    404: "not_found",
    500: "internal_error",
    503: "service_unavailable",
    504: "timeout",
}


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "type": _ERROR_TYPES.get(exc.status_code, "error"),
                "message": str(exc.detail),
            }
        },
    )


# -----------------------------
# Startup / Shutdown Events
# -----------------------------
async def _connect_relational():
    global db, DB_CONNECTED, DB_ERROR

    if not DATABASE_URL:
        logger.warning("DATABASE_URL not set; relational sources disabled.")
        DB_CONNECTED = False
        DB_ERROR = "DATABASE_URL not set"
        return None

    try:
        from prisma import Prisma

        db = Prisma()
        await db.connect()
        DB_CONNECTED = True
        DB_ERROR = None
        logger.info("Prisma DB connected")
        return RelationalAdapter(db)
    except Exception as e:
        DB_CONNECTED = False
        DB_ERROR = str(e)
        logger.exception("Failed to connect Prisma DB")
        if DEBUG:
            raise
        return None


@app.on_event("startup")
async def startup():
    global orchestrator, STARTUP_ERROR

    try:
        policy_table = load_policy_table(POLICY_TABLE_PATH)
        catalog = load_catalog(SCHEMA_CATALOG_PATH)
    except Exception as e:
        STARTUP_ERROR = str(e)
        logger.exception("Failed to load policy table or schema catalog")
        if DEBUG:
            raise
        return

    sink = JsonlAuditSink(AUDIT_LOG_PATH) if AUDIT_LOG_PATH else InMemoryAuditSink()

    relational = await _connect_relational()
    document = None
    if os.path.exists(DOCUMENT_STORE_PATH):
        document = DocumentAdapter(InMemoryDocumentStore.from_file(DOCUMENT_STORE_PATH))

    # One adapter per source, picked by the source's family
    adapters = {}
    pinned = catalog.pin()
    for source_id in pinned.source_ids():
        family = pinned.snapshot(source_id).family
        adapter = relational if family is SourceFamily.RELATIONAL else document
        if adapter is None:
            logger.warning("No adapter available for source=%s family=%s", source_id, family.value)
            continue
        adapters[source_id] = adapter

    orchestrator = QueryOrchestrator(
        catalog=catalog,
        policy_table=policy_table,
        audit=AuditTrail(sink),
        gateway=ExecutionGateway(adapters),
    )
    STARTUP_ERROR = None
    logger.info(
        "Pipeline ready policy_version=%s sources=%s",
        policy_table.version,
        sorted(adapters),
    )


@app.on_event("shutdown")
async def shutdown():
    global DB_CONNECTED
    if DB_CONNECTED and db is not None:
        await db.disconnect()
        DB_CONNECTED = False
        logger.info("Prisma DB disconnected")

# -----------------------------
# API Endpoints
# -----------------------------
@app.get("/")
async def root():
    return {"message": "Intent Gate API is running."}


@app.get("/health")
async def health() -> Dict[str, Any]:
    info = {
        "status": "ok" if orchestrator is not None else "degraded",
        "pipeline_ready": orchestrator is not None,
        "db_connected": DB_CONNECTED,
    }
    if DB_ERROR:
        info["db_error"] = DB_ERROR
    if STARTUP_ERROR:
        info["startup_error"] = STARTUP_ERROR
    return info


@app.get("/metrics")
async def metrics() -> Dict[str, Any]:
    async with metrics_lock:
        return request_counters.copy()


@app.post("/process", response_model=GateResponse)
async def process_request(request: GateRequest):
    await _bump("total")

    if orchestrator is None:
        await _bump("errors")
        raise HTTPException(status_code=503, detail="Pipeline unavailable")

    try:
        query = request.to_query()
    except ValueError as e:
        await _bump("errors")
        raise HTTPException(status_code=400, detail=str(e))

    logger.info(
        f"[REQUEST_START] request_id={query.request_id}, user_id={query.identity.user_id}, "
        f"text_length={len(query.text)}"
    )

    try:
        response = await asyncio.wait_for(
            orchestrator.handle_user_query(query), timeout=REQUEST_TIMEOUT_S
        )
    except asyncio.TimeoutError:
        await _bump("timeouts")
        logger.warning(f"[TIMEOUT] request_id={query.request_id}")
        raise HTTPException(status_code=504, detail="Request timed out")
    except Exception as e:
        await _bump("errors")
        logger.exception(
            f"[ERROR] request_id={query.request_id}, user_id={query.identity.user_id}, exception={e}"
        )
        raise HTTPException(
            status_code=500,
            detail=str(e) if DEBUG else "An unexpected error occurred",
        )

    await _bump(_OUTCOME_COUNTERS[response.decision_outcome])
    return response


@app.get("/audit/{request_id}")
async def audit_records(request_id: str, x_audit_token: Optional[str] = Header(default=None)):
    if not AUDIT_API_TOKEN or x_audit_token != AUDIT_API_TOKEN:
        raise HTTPException(status_code=403, detail="Audit access denied")
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Pipeline unavailable")

    records = await orchestrator.audit.records_for(request_id)
    if not records:
        raise HTTPException(status_code=404, detail="No audit records for this request")

    return {
        "request_id": request_id,
        "chain_valid": verify_chain(records),
        "records": deep_serialize(sorted(records, key=lambda r: r.sequence)),
    }


# -----------------------------
# Entrypoint
# -----------------------------
import uvicorn

if __name__ == "__main__":
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run("API_LAYER.app:app", host="0.0.0.0", port=port, workers=1)

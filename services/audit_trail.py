# FILE: services/audit_trail.py
"""
Append-only audit trail.

Every stage transition of a request becomes one AuditRecord. Records of one
request are hash-chained (each carries the previous record's hash), so any
later edit of the stored stream is detectable with verify_chain().

Sinks only append. Retention and compaction belong to whoever owns the store.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from models.audit import AuditRecord, AuditStage
from models.query import Identity
from services.utils import canonical_hash, deep_serialize

logger = logging.getLogger("audit_trail")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def record_hash(record_fields: Dict[str, Any]) -> str:
    return canonical_hash(
        {
            "request_id": record_fields["request_id"],
            "sequence": record_fields["sequence"],
            "stage": record_fields["stage"],
            "user_id": record_fields["user_id"],
            "tenant": record_fields["tenant"],
            "timestamp": record_fields["timestamp"],
            "summary": record_fields["summary"],
            "previous_hash": record_fields["previous_hash"],
        }
    )


def verify_chain(records: Sequence[AuditRecord]) -> bool:
    """True when every record hashes to its payload_hash and links to its predecessor."""
    previous: Optional[str] = None
    for expected_seq, rec in enumerate(sorted(records, key=lambda r: r.sequence)):
        if rec.sequence != expected_seq or rec.previous_hash != previous:
            return False
        if record_hash(rec.model_dump()) != rec.payload_hash:
            return False
        previous = rec.payload_hash
    return True


# -----------------------------
# Sinks
# -----------------------------
class AuditSink(ABC):
    @abstractmethod
    async def append(self, record: AuditRecord) -> None: ...

    @abstractmethod
    async def records_for(self, request_id: str) -> List[AuditRecord]: ...


class InMemoryAuditSink(AuditSink):
    def __init__(self):
        self._records: List[AuditRecord] = []

    async def append(self, record: AuditRecord) -> None:
        # list.append is atomic within one event loop
        self._records.append(record)

    async def records_for(self, request_id: str) -> List[AuditRecord]:
        return [r for r in self._records if r.request_id == request_id]

    @property
    def records(self) -> List[AuditRecord]:
        return list(self._records)


class JsonlAuditSink(AuditSink):
    """One JSON object per line, opened in append mode for every write."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    def _write_line(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as fh:
            fh.write(line + "\n")

    async def append(self, record: AuditRecord) -> None:
        line = json.dumps(deep_serialize(record), sort_keys=True)
        # Lock covers the local file append only
        async with self._lock:
            await asyncio.to_thread(self._write_line, line)

    def _read_lines(self) -> List[str]:
        if not self.path.exists():
            return []
        return self.path.read_text(encoding="utf-8").splitlines()

    async def records_for(self, request_id: str) -> List[AuditRecord]:
        lines = await asyncio.to_thread(self._read_lines)
        records = []
        for line in lines:
            if not line.strip():
                continue
            data = json.loads(line)
            if data.get("request_id") == request_id:
                records.append(AuditRecord.model_validate(data))
        return records


# -----------------------------
# Trail + per-request session
# -----------------------------
class AuditTrail:
    def __init__(self, sink: AuditSink, *, clock: Callable[[], datetime] = _utcnow):
        self.sink = sink
        self.clock = clock

    async def record(
        self,
        stage: AuditStage,
        payload_summary: Dict[str, Any],
        identity: Identity,
        timestamp: Optional[datetime] = None,
        *,
        request_id: str,
        sequence: int = 0,
        previous_hash: Optional[str] = None,
    ) -> AuditRecord:
        fields = {
            "audit_id": uuid.uuid4().hex,
            "request_id": request_id,
            "sequence": sequence,
            "stage": AuditStage(stage).value,
            "user_id": identity.user_id,
            "tenant": identity.tenant,
            "roles": tuple(sorted(identity.roles)),
            "timestamp": (timestamp or self.clock()).isoformat(),
            "summary": deep_serialize(payload_summary),
            "previous_hash": previous_hash,
        }
        fields["payload_hash"] = record_hash(fields)
        record = AuditRecord.model_validate(fields)

        await self.sink.append(record)
        logger.info(
            "[AUDIT] request_id=%s seq=%d stage=%s user_id=%s",
            request_id,
            sequence,
            record.stage.value,
            identity.user_id,
        )
        return record

    def session(self, request_id: str, identity: Identity) -> "AuditSession":
        return AuditSession(self, request_id, identity)

    async def records_for(self, request_id: str) -> List[AuditRecord]:
        return await self.sink.records_for(request_id)


class AuditSession:
    """Request-scoped chain state. Nothing here is shared between requests."""

    def __init__(self, trail: AuditTrail, request_id: str, identity: Identity):
        self.trail = trail
        self.request_id = request_id
        self.identity = identity
        self._sequence = 0
        self._last: Optional[AuditRecord] = None

    @property
    def last_record(self) -> Optional[AuditRecord]:
        return self._last

    async def record(self, stage: AuditStage, payload_summary: Dict[str, Any]) -> AuditRecord:
        rec = await self.trail.record(
            stage,
            payload_summary,
            self.identity,
            request_id=self.request_id,
            sequence=self._sequence,
            previous_hash=self._last.payload_hash if self._last else None,
        )
        self._sequence += 1
        self._last = rec
        return rec

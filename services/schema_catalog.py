# FILE: services/schema_catalog.py
"""
Read-only schema catalog client.

The ingestion side publishes snapshots; the pipeline only reads them.
Every publish swaps in a new immutable CatalogState, so readers never take a
lock and a request that pinned a state keeps seeing exactly that state.
"""

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError

from core.errors import CatalogError
from models.schema import SchemaSnapshot

logger = logging.getLogger("schema_catalog")


# -----------------------------
# Pinned view
# -----------------------------
@dataclass(frozen=True)
class CatalogState:
    """One consistent catalog version, pinned for the lifetime of a request."""

    version: int
    snapshots: Mapping[str, SchemaSnapshot] = field(default_factory=lambda: MappingProxyType({}))

    def snapshot(self, source_id: str) -> SchemaSnapshot:
        try:
            return self.snapshots[source_id]
        except KeyError:
            raise CatalogError(f"Unknown data source: {source_id!r}") from None

    def source_ids(self) -> List[str]:
        return sorted(self.snapshots)

    def planning_hints(self, authorized_scope: Iterable[str]) -> List[Dict[str, Any]]:
        """
        Resource and field names inside the authorized scope, for the plan
        generator. Names and types only: no sensitivity tags, no owners.
        """
        scope = set(authorized_scope)
        hints = []
        for source_id in self.source_ids():
            snap = self.snapshots[source_id]
            resources = [
                {
                    "resource_id": res.resource_id,
                    "resource_class": res.resource_class,
                    "fields": [{"name": f.name, "type": f.type} for f in res.fields],
                }
                for res in snap.resources
                if res.resource_class in scope
            ]
            if resources:
                hints.append(
                    {
                        "source_id": snap.source_id,
                        "family": snap.family.value,
                        "resources": resources,
                    }
                )
        return hints


# -----------------------------
# Catalog
# -----------------------------
class SchemaCatalog:
    def __init__(self, snapshots: Iterable[SchemaSnapshot] = ()):
        self._publish_lock = threading.Lock()
        self._history: Dict[str, Dict[int, SchemaSnapshot]] = {}
        self._state = CatalogState(version=0)
        for snap in snapshots:
            self.publish(snap)

    def pin(self) -> CatalogState:
        """Current state. Attribute reads are atomic, no lock needed."""
        return self._state

    def get_snapshot(self, source_id: str, version: Optional[int] = None) -> SchemaSnapshot:
        if version is None:
            return self._state.snapshot(source_id)

        versions = self._history.get(source_id)
        if not versions:
            raise CatalogError(f"Unknown data source: {source_id!r}")
        try:
            return versions[version]
        except KeyError:
            raise CatalogError(f"Unknown version {version} for source {source_id!r}") from None

    def publish(self, snapshot: SchemaSnapshot) -> CatalogState:
        """Ingestion-side entry point. Versions must increase per source."""
        with self._publish_lock:
            current = self._state.snapshots.get(snapshot.source_id)
            if current is not None and snapshot.version <= current.version:
                raise CatalogError(
                    f"Snapshot version for {snapshot.source_id!r} must increase "
                    f"(current={current.version}, got={snapshot.version})"
                )

            snapshots = dict(self._state.snapshots)
            snapshots[snapshot.source_id] = snapshot
            self._history.setdefault(snapshot.source_id, {})[snapshot.version] = snapshot
            self._state = CatalogState(
                version=self._state.version + 1,
                snapshots=MappingProxyType(snapshots),
            )

        logger.info(
            "Published snapshot source=%s version=%s catalog_version=%s",
            snapshot.source_id,
            snapshot.version,
            self._state.version,
        )
        return self._state


def load_catalog(path: Union[str, Path]) -> SchemaCatalog:
    """Build a catalog from a JSON fixture: {"snapshots": [...]}."""
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        snapshots = [SchemaSnapshot.model_validate(item) for item in raw.get("snapshots", [])]
    except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as e:
        raise CatalogError(f"Cannot load schema catalog from {path}: {e}") from e
    return SchemaCatalog(snapshots)

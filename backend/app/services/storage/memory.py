"""
Process-local storage backend.

Used when no persistent store is configured. State lives for the lifetime of
the coordinator process and is not shared between instances.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from app.models.service import ServiceRecord, ServiceStatus
from app.services.storage.base import GraphSnapshotStore, ServiceStore, StoredSnapshot


class InMemoryServiceStore(ServiceStore):
    backend_name = "memory"

    def __init__(self):
        # Insertion order is kept so equal timestamps resolve to the later insert
        self._records: Dict[str, ServiceRecord] = {}

    def insert(self, record: ServiceRecord) -> ServiceRecord:
        self._records[record.id] = record
        return record

    def get(self, service_id: str) -> Optional[ServiceRecord]:
        return self._records.get(service_id)

    def find_latest_by_name(self, service_name: str) -> Optional[ServiceRecord]:
        for record in self.list_all():
            if record.service_name == service_name:
                return record
        return None

    def list_all(self) -> List[ServiceRecord]:
        newest_inserted_first = list(reversed(list(self._records.values())))
        return sorted(newest_inserted_first, key=lambda r: r.registered_at, reverse=True)

    def update_status(
        self,
        service_id: str,
        status: ServiceStatus,
        checked_at: datetime,
    ) -> Optional[ServiceRecord]:
        record = self._records.get(service_id)
        if record is None:
            return None
        updated = record.model_copy(update={"status": status, "last_health_check": checked_at})
        self._records[service_id] = updated
        return updated

    def count(self, status: Optional[ServiceStatus] = None) -> int:
        if status is None:
            return len(self._records)
        return sum(1 for r in self._records.values() if r.status == status)


class InMemoryGraphSnapshotStore(GraphSnapshotStore):
    """Keeps only the most recent snapshot."""

    backend_name = "memory"

    def __init__(self):
        self._latest: Optional[StoredSnapshot] = None

    def save(self, version: int, graph_data: Dict[str, Any]) -> None:
        if self._latest is not None and self._latest.version > version:
            return
        self._latest = StoredSnapshot(
            version=version,
            graph_data=graph_data,
            stored_at=datetime.now(timezone.utc),
        )

    def load_latest(self) -> Optional[StoredSnapshot]:
        return self._latest

    def latest_version(self) -> Optional[int]:
        return self._latest.version if self._latest else None

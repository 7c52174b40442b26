"""
Storage interfaces for the coordinator.

Two logical tables are persisted:
- registered services (one row per ServiceRecord)
- knowledge graph snapshots (one row per version, latest-by-version wins)

Every backend must satisfy the same contract so callers never depend on
which one is active. Implementations raise StorageError when the backend
is unavailable or rejects an operation.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from app.models.service import ServiceRecord, ServiceStatus


@dataclass(frozen=True)
class StoredSnapshot:
    """A persisted knowledge graph snapshot in wire (camelCase JSON) form."""

    version: int
    graph_data: Dict[str, Any]
    stored_at: datetime


class ServiceStore(ABC):
    """Persistence for service records."""

    backend_name: str = "abstract"

    @abstractmethod
    def insert(self, record: ServiceRecord) -> ServiceRecord:
        """Persist a new record and return it as stored."""

    @abstractmethod
    def get(self, service_id: str) -> Optional[ServiceRecord]:
        ...

    @abstractmethod
    def find_latest_by_name(self, service_name: str) -> Optional[ServiceRecord]:
        """Most recently registered record with this name."""

    @abstractmethod
    def list_all(self) -> List[ServiceRecord]:
        """All records, most recently registered first."""

    @abstractmethod
    def update_status(
        self,
        service_id: str,
        status: ServiceStatus,
        checked_at: datetime,
    ) -> Optional[ServiceRecord]:
        """Update status and last health check; None when the id is unknown."""

    @abstractmethod
    def count(self, status: Optional[ServiceStatus] = None) -> int:
        ...


class GraphSnapshotStore(ABC):
    """Persistence for knowledge graph snapshots."""

    backend_name: str = "abstract"

    @abstractmethod
    def save(self, version: int, graph_data: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def load_latest(self) -> Optional[StoredSnapshot]:
        ...

    @abstractmethod
    def latest_version(self) -> Optional[int]:
        ...

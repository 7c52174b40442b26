"""
Supabase (PostgreSQL) storage backend.

Tables:
- registered_services(id, service_name, version, endpoint, health_check,
  migration_file jsonb, registered_at, last_health_check, status)
- knowledge_graph(version, graph_data jsonb, last_updated)

supabase-py is synchronous; calls run on the event loop thread the same
way the rest of the request handlers use the client.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import Client

from app.core.errors import StorageError
from app.core.logging import get_logger
from app.models.service import MigrationDescriptor, ServiceRecord, ServiceStatus
from app.services.storage.base import GraphSnapshotStore, ServiceStore, StoredSnapshot

logger = get_logger(__name__)

SERVICES_TABLE = "registered_services"
GRAPH_TABLE = "knowledge_graph"


def record_to_row(record: ServiceRecord) -> Dict[str, Any]:
    """Serialize a record into a snake_case table row."""
    migration = record.migration_file.to_wire() if record.migration_file else None
    return {
        "id": record.id,
        "service_name": record.service_name,
        "version": record.version,
        "endpoint": record.endpoint,
        "health_check": record.health_check,
        "migration_file": migration,
        "registered_at": record.registered_at.isoformat(),
        "last_health_check": record.last_health_check.isoformat() if record.last_health_check else None,
        "status": record.status.value,
    }


def row_to_record(row: Dict[str, Any]) -> ServiceRecord:
    migration = row.get("migration_file")
    descriptor = MigrationDescriptor.model_validate(migration) if migration is not None else None
    return ServiceRecord(
        id=str(row["id"]),
        service_name=row["service_name"],
        version=row["version"],
        endpoint=row["endpoint"],
        health_check=row.get("health_check") or "/health",
        migration_file=descriptor,
        registered_at=row["registered_at"],
        last_health_check=row.get("last_health_check"),
        status=row.get("status") or ServiceStatus.ACTIVE,
    )


def _storage_failure(operation: str, table: str, exc: Exception) -> StorageError:
    logger.error(
        "storage_operation_failed",
        operation=operation,
        table=table,
        error=str(exc),
        error_type=type(exc).__name__,
    )
    return StorageError(f"Storage operation '{operation}' failed: {exc}", operation=operation)


class SupabaseServiceStore(ServiceStore):
    backend_name = "supabase"

    def __init__(self, client: Client):
        self.client = client

    def insert(self, record: ServiceRecord) -> ServiceRecord:
        try:
            response = self.client.table(SERVICES_TABLE).insert(record_to_row(record)).execute()
        except Exception as e:
            raise _storage_failure("insert", SERVICES_TABLE, e) from e

        if not response.data:
            raise StorageError("Insert returned no rows", operation="insert")
        return row_to_record(response.data[0])

    def get(self, service_id: str) -> Optional[ServiceRecord]:
        try:
            response = (
                self.client.table(SERVICES_TABLE)
                .select("*")
                .eq("id", service_id)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise _storage_failure("get", SERVICES_TABLE, e) from e

        return row_to_record(response.data[0]) if response.data else None

    def find_latest_by_name(self, service_name: str) -> Optional[ServiceRecord]:
        try:
            response = (
                self.client.table(SERVICES_TABLE)
                .select("*")
                .eq("service_name", service_name)
                .order("registered_at", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise _storage_failure("find_latest_by_name", SERVICES_TABLE, e) from e

        return row_to_record(response.data[0]) if response.data else None

    def list_all(self) -> List[ServiceRecord]:
        try:
            response = (
                self.client.table(SERVICES_TABLE)
                .select("*")
                .order("registered_at", desc=True)
                .execute()
            )
        except Exception as e:
            raise _storage_failure("list_all", SERVICES_TABLE, e) from e

        return [row_to_record(row) for row in response.data or []]

    def update_status(
        self,
        service_id: str,
        status: ServiceStatus,
        checked_at: datetime,
    ) -> Optional[ServiceRecord]:
        try:
            response = (
                self.client.table(SERVICES_TABLE)
                .update({"status": status.value, "last_health_check": checked_at.isoformat()})
                .eq("id", service_id)
                .execute()
            )
        except Exception as e:
            raise _storage_failure("update_status", SERVICES_TABLE, e) from e

        return row_to_record(response.data[0]) if response.data else None

    def count(self, status: Optional[ServiceStatus] = None) -> int:
        try:
            query = self.client.table(SERVICES_TABLE).select("id", count="exact")
            if status is not None:
                query = query.eq("status", status.value)
            response = query.execute()
        except Exception as e:
            raise _storage_failure("count", SERVICES_TABLE, e) from e

        if response.count is not None:
            return response.count
        return len(response.data or [])


class SupabaseGraphSnapshotStore(GraphSnapshotStore):
    backend_name = "supabase"

    def __init__(self, client: Client):
        self.client = client

    def save(self, version: int, graph_data: Dict[str, Any]) -> None:
        row = {
            "version": version,
            "graph_data": graph_data,
            "last_updated": graph_data.get("metadata", {}).get("lastUpdated"),
        }
        try:
            self.client.table(GRAPH_TABLE).insert(row).execute()
        except Exception as e:
            raise _storage_failure("save_graph", GRAPH_TABLE, e) from e

    def load_latest(self) -> Optional[StoredSnapshot]:
        try:
            response = (
                self.client.table(GRAPH_TABLE)
                .select("version, graph_data, last_updated")
                .order("version", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise _storage_failure("load_graph", GRAPH_TABLE, e) from e

        if not response.data:
            return None

        row = response.data[0]
        return StoredSnapshot(
            version=int(row["version"]),
            graph_data=row["graph_data"],
            stored_at=datetime.fromisoformat(str(row["last_updated"]).replace("Z", "+00:00")),
        )

    def latest_version(self) -> Optional[int]:
        try:
            response = (
                self.client.table(GRAPH_TABLE)
                .select("version")
                .order("version", desc=True)
                .limit(1)
                .execute()
            )
        except Exception as e:
            raise _storage_failure("latest_graph_version", GRAPH_TABLE, e) from e

        return int(response.data[0]["version"]) if response.data else None

"""
Storage backends for service records and knowledge graph snapshots.

The backend is chosen once at startup from Settings.storage_backend.
"""
from typing import Tuple

from app.core.config import Settings
from app.core.database import get_supabase_client
from app.core.errors import StorageError
from app.core.logging import get_logger
from app.services.storage.base import GraphSnapshotStore, ServiceStore, StoredSnapshot
from app.services.storage.memory import InMemoryGraphSnapshotStore, InMemoryServiceStore
from app.services.storage.supabase_store import SupabaseGraphSnapshotStore, SupabaseServiceStore

logger = get_logger(__name__)


def create_stores(settings: Settings) -> Tuple[ServiceStore, GraphSnapshotStore]:
    """Build the service and snapshot stores for the configured backend."""
    if settings.storage_backend == "supabase":
        client = get_supabase_client(settings.supabase_url, settings.supabase_key)
        if client is None:
            raise StorageError("Supabase backend selected but client could not be created", operation="connect")
        logger.info("storage_backend_selected", backend="supabase")
        return SupabaseServiceStore(client), SupabaseGraphSnapshotStore(client)

    logger.info("storage_backend_selected", backend="memory")
    return InMemoryServiceStore(), InMemoryGraphSnapshotStore()


__all__ = [
    "GraphSnapshotStore",
    "ServiceStore",
    "StoredSnapshot",
    "InMemoryGraphSnapshotStore",
    "InMemoryServiceStore",
    "SupabaseGraphSnapshotStore",
    "SupabaseServiceStore",
    "create_stores",
]

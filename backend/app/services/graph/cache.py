"""
Knowledge graph cache.

Keeps the latest graph in process for a short TTL, falls back to the most
recent persisted snapshot, and rebuilds from the registry when neither is
available. Rebuilds are also triggered in the background by registry
changes; between a change and the end of its rebuild, readers may see the
previous graph.
"""
import time
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import GraphRebuildError, StorageError
from app.core.logging import get_logger
from app.core.metrics import (
    record_cache_hit,
    record_cache_miss,
    record_graph_persist_failure,
    record_graph_rebuild,
)
from app.core.tracing import get_tracer, record_exception, set_span_status, StatusCode
from app.models.graph import KnowledgeGraph, RelatedService
from app.models.service import ServiceRecord
from app.services.graph.builder import build_knowledge_graph
from app.services.registry import ServiceRegistry
from app.services.storage.base import GraphSnapshotStore, StoredSnapshot

logger = get_logger(__name__)

CACHE_TYPE = "knowledge_graph"


class KnowledgeGraphCache:
    """TTL cache around graph building, backed by a snapshot store."""

    def __init__(
        self,
        registry: ServiceRegistry,
        snapshot_store: Optional[GraphSnapshotStore] = None,
        ttl_seconds: float = 30.0,
    ):
        self.registry = registry
        self.snapshot_store = snapshot_store
        self.ttl_seconds = ttl_seconds
        self._graph: Optional[KnowledgeGraph] = None
        self._cached_at: Optional[float] = None

    @property
    def cached_version(self) -> int:
        return self._graph.version if self._graph else 0

    def _is_fresh(self) -> bool:
        if self._graph is None or self._cached_at is None:
            return False
        return (time.monotonic() - self._cached_at) < self.ttl_seconds

    def _install(self, graph: KnowledgeGraph, age_seconds: float = 0.0) -> None:
        self._graph = graph
        self._cached_at = time.monotonic() - max(age_seconds, 0.0)

    def invalidate(self) -> None:
        self._graph = None
        self._cached_at = None

    async def get(self, force_rebuild: bool = False) -> KnowledgeGraph:
        """
        Return the current knowledge graph.

        Args:
            force_rebuild: Skip the cache and the persisted snapshot and
                rebuild from the registry

        Returns:
            KnowledgeGraph

        Raises:
            GraphRebuildError: A rebuild was needed and failed
        """
        if force_rebuild:
            return await self.rebuild()

        if self._is_fresh():
            record_cache_hit(CACHE_TYPE)
            return self._graph

        record_cache_miss(CACHE_TYPE)

        loaded = self._load_snapshot()
        if loaded is not None:
            return loaded

        return await self.rebuild()

    def _load_snapshot(self) -> Optional[KnowledgeGraph]:
        if self.snapshot_store is None:
            return None

        try:
            snapshot = self.snapshot_store.load_latest()
        except StorageError as e:
            logger.warning("knowledge_graph_load_failed", error=str(e))
            return None

        if snapshot is None:
            return None

        graph = self._parse_snapshot(snapshot)
        if graph is None:
            return None

        # A snapshot older than what this process already built is not adopted
        if self._graph is not None and graph.version < self._graph.version:
            return None

        age = (datetime.now(timezone.utc) - snapshot.stored_at).total_seconds()
        self._install(graph, age_seconds=age)
        logger.info("knowledge_graph_loaded", version=graph.version, age_seconds=round(age, 3))
        return graph

    @staticmethod
    def _parse_snapshot(snapshot: StoredSnapshot) -> Optional[KnowledgeGraph]:
        try:
            return KnowledgeGraph.model_validate(snapshot.graph_data)
        except PydanticValidationError as e:
            logger.warning(
                "knowledge_graph_snapshot_invalid",
                version=snapshot.version,
                errors=e.error_count(),
            )
            return None

    def _previous_version(self) -> int:
        previous = self.cached_version
        if self.snapshot_store is None:
            return previous
        try:
            stored = self.snapshot_store.latest_version()
        except StorageError as e:
            logger.warning("knowledge_graph_version_lookup_failed", error=str(e))
            return previous
        return max(previous, stored or 0)

    async def rebuild(self) -> KnowledgeGraph:
        """
        Rebuild the graph from the registry and persist it.

        The new graph is cached before it is persisted; a persistence failure
        leaves it cache-only.
        """
        tracer = get_tracer()
        with tracer.start_as_current_span("knowledge_graph.rebuild") as span:
            try:
                services = await self.registry.list_full()
            except StorageError as e:
                record_graph_rebuild(success=False)
                record_exception(e)
                set_span_status(StatusCode.ERROR, str(e))
                logger.error("knowledge_graph_rebuild_failed", error=str(e))
                raise GraphRebuildError(f"Failed to rebuild knowledge graph: {e.message}") from e

            graph = build_knowledge_graph(services, previous_version=self._previous_version())
            self._install(graph)
            record_graph_rebuild(success=True, version=graph.version)

            span.set_attribute("knowledge_graph.version", graph.version)
            span.set_attribute("knowledge_graph.services", graph.metadata.total_services)
            span.set_attribute("knowledge_graph.relationships", len(graph.relationships))

            self._persist(graph)

            logger.info(
                "knowledge_graph_rebuilt",
                version=graph.version,
                total_services=graph.metadata.total_services,
                relationships=len(graph.relationships),
            )
            return graph

    def _persist(self, graph: KnowledgeGraph) -> None:
        if self.snapshot_store is None:
            return
        try:
            self.snapshot_store.save(graph.version, graph.to_wire())
        except StorageError as e:
            record_graph_persist_failure()
            logger.warning("knowledge_graph_persist_failed", version=graph.version, error=str(e))

    async def find_service_by_query(self, text: str) -> Optional[ServiceRecord]:
        """
        Find the service best matching a free-text query.

        Checks, in order: service names (either direction), schema names,
        then relationship endpoints.
        """
        graph = await self.get()
        query = text.lower()

        for node in graph.nodes:
            name = node.data.service_name.lower()
            base = name.split("-")[0]
            if query in name or (base and base in query):
                return node.data

        for schema_name, group in graph.schemas.items():
            if schema_name.lower() in query and group.services:
                node = graph.node_by_name(group.services[0])
                if node is not None:
                    return node.data

        for rel in graph.relationships:
            if rel.from_.lower() in query or rel.to.lower() in query:
                node = graph.node_by_name(rel.from_)
                if node is not None:
                    return node.data

        return None

    async def related_services(self, service_name: str) -> List[RelatedService]:
        """Services connected to `service_name`, strongest relationship first."""
        graph = await self.get()
        related: List[RelatedService] = []
        seen = set()

        for rel in graph.relationships:
            if rel.from_ == service_name:
                other = rel.to
            elif rel.to == service_name:
                other = rel.from_
            else:
                continue

            if other in seen:
                continue
            node = graph.node_by_name(other)
            if node is None:
                continue

            seen.add(other)
            related.append(RelatedService(
                service=node.data,
                relationship_type=rel.type,
                relationship_reason=rel.reason,
                weight=rel.weight,
            ))

        related.sort(key=lambda r: r.weight, reverse=True)
        return related

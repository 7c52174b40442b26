"""
Component construction.

Every long-lived component is built here, once per application, and handed
its collaborators through its constructor. The resulting container is stored
on `app.state.components`; route handlers reach it through the dependencies
in app.routes.deps.
"""
from dataclasses import dataclass
from typing import Optional

import httpx

from app.core.config import Settings
from app.services.graph.cache import KnowledgeGraphCache
from app.services.proxy.forwarder import ProxyForwarder
from app.services.registry import ServiceRegistry
from app.services.routing.oracle import OracleClient
from app.services.routing.router import RoutingService
from app.services.storage import create_stores
from app.services.storage.base import GraphSnapshotStore, ServiceStore
from app.services.uiux import UIUXConfigService


@dataclass
class Components:
    settings: Settings
    registry: ServiceRegistry
    graph_cache: KnowledgeGraphCache
    oracle: OracleClient
    router: RoutingService
    forwarder: ProxyForwarder
    uiux: UIUXConfigService


def build_components(
    settings: Settings,
    service_store: Optional[ServiceStore] = None,
    snapshot_store: Optional[GraphSnapshotStore] = None,
    oracle: Optional[OracleClient] = None,
    proxy_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Components:
    """
    Build and connect all coordinator components.

    Stores default to the backend selected in settings; tests pass their own
    stores, oracle and proxy transport.
    """
    if service_store is None or snapshot_store is None:
        default_services, default_snapshots = create_stores(settings)
        service_store = service_store or default_services
        snapshot_store = snapshot_store or default_snapshots

    registry = ServiceRegistry(service_store)
    graph_cache = KnowledgeGraphCache(
        registry,
        snapshot_store=snapshot_store,
        ttl_seconds=settings.graph_cache_ttl_seconds,
    )
    registry.add_change_listener(graph_cache.rebuild)

    if oracle is None:
        oracle = OracleClient(
            api_base=settings.llm_api_base,
            api_key=settings.llm_api_key,
            model=settings.llm_routing_model,
            timeout_seconds=settings.llm_routing_timeout_seconds,
        )

    return Components(
        settings=settings,
        registry=registry,
        graph_cache=graph_cache,
        oracle=oracle,
        router=RoutingService(graph_cache, registry, oracle),
        forwarder=ProxyForwarder(
            timeout_seconds=settings.proxy_timeout_seconds,
            coordinator_name=settings.coordinator_name,
            transport=proxy_transport,
        ),
        uiux=UIUXConfigService(),
    )

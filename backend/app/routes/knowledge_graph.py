"""
Knowledge graph endpoints.

GET  /knowledge-graph?rebuild={bool}
POST /knowledge-graph/rebuild
GET  /knowledge-graph/related/{service_name}

The same routes are also served under /graph.
"""
from fastapi import APIRouter, Depends, Query

from app.core.logging import get_logger
from app.models.responses import GraphRebuildResponse, GraphRebuildSummary, KnowledgeGraphResponse
from app.routes.deps import get_graph_cache
from app.services.graph.cache import KnowledgeGraphCache

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def get_knowledge_graph(
    rebuild: bool = Query(False, description="Rebuild from the registry instead of using the cache"),
    graph_cache: KnowledgeGraphCache = Depends(get_graph_cache),
):
    """Current knowledge graph of registered services and their relationships."""
    graph = await graph_cache.get(force_rebuild=rebuild)

    logger.info(
        "knowledge_graph_request",
        total_services=graph.metadata.total_services,
        relationships=len(graph.relationships),
        version=graph.version,
        rebuild=rebuild,
    )
    return KnowledgeGraphResponse(knowledge_graph=graph).to_wire()


@router.post("/rebuild")
async def rebuild_knowledge_graph(graph_cache: KnowledgeGraphCache = Depends(get_graph_cache)):
    logger.info("knowledge_graph_manual_rebuild_requested")
    graph = await graph_cache.rebuild()
    summary = GraphRebuildSummary(
        version=graph.version,
        total_services=graph.metadata.total_services,
        relationships=len(graph.relationships),
    )
    return GraphRebuildResponse(graph=summary).to_wire()


@router.get("/related/{service_name}")
async def get_related_services(
    service_name: str,
    graph_cache: KnowledgeGraphCache = Depends(get_graph_cache),
):
    """Services related to `service_name`, strongest relationship first."""
    related = await graph_cache.related_services(service_name)
    return {
        "success": True,
        "serviceName": service_name,
        "related": [r.to_wire() for r in related],
        "total": len(related),
    }

"""
Service discovery endpoint.

GET /services
GET /registry
"""
from fastapi import APIRouter, Depends

from app.core.logging import get_logger
from app.models.responses import ServiceListResponse
from app.routes.deps import get_registry
from app.services.registry import ServiceRegistry

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def list_services(registry: ServiceRegistry = Depends(get_registry)):
    """All registered services, most recently registered first."""
    services = await registry.list_summaries()
    logger.info("service_discovery_request", service_count=len(services))
    return ServiceListResponse(services=services, total=len(services)).to_wire()

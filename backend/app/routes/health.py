"""
Health check endpoint.
"""
from fastapi import APIRouter, Depends

from app.core.logging import get_logger
from app.core.metrics import get_uptime_seconds
from app.models.responses import HealthResponse
from app.routes.deps import get_registry
from app.services.registry import ServiceRegistry

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check(registry: ServiceRegistry = Depends(get_registry)):
    """
    Basic health check endpoint.

    Returns:
        status, uptime in seconds and the number of registered services
    """
    uptime = get_uptime_seconds()
    registered = registry.count()
    logger.debug("health_check_requested", uptime=uptime, registered_services=registered)
    return HealthResponse(uptime=uptime, registered_services=registered).to_wire()

"""
Prometheus metrics endpoint.

GET /metrics
Returns Prometheus-formatted metrics for scraping.
"""
from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse

from app.core.logging import get_logger
from app.core.metrics import get_metrics, get_metrics_content_type, update_registered_services
from app.routes.deps import get_registry
from app.services.registry import ServiceRegistry

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def metrics(registry: ServiceRegistry = Depends(get_registry)):
    """
    Prometheus metrics endpoint.

    The registered services gauge is refreshed from the registry on each scrape.
    """
    try:
        update_registered_services(registry.count())
        return Response(content=get_metrics(), media_type=get_metrics_content_type())
    except Exception as e:
        logger.error(
            "metrics_endpoint_error",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        return Response(
            content=b"# Error collecting metrics\n",
            media_type=get_metrics_content_type(),
        )

"""
Catch-all proxy.

Every request that does not match a coordinator endpoint is described in
natural language, routed to a registered service and forwarded there. This
router must be included last.
"""
import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from app.core.errors import ForwardError, NoMatchError
from app.core.logging import get_logger
from app.core.metrics import COORDINATOR_PATH_PREFIXES
from app.routes.deps import get_forwarder, get_registry, get_router
from app.services.proxy.forwarder import InboundRequest, OutboundResponse, ProxyForwarder, relay_headers
from app.services.registry import ServiceRegistry
from app.services.routing.router import RoutingService, build_query_from_request

logger = get_logger(__name__)
router = APIRouter()

PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD", "OPTIONS"]


def is_coordinator_path(path: str) -> bool:
    first_segment = path.strip("/").split("/")[0]
    return first_segment in COORDINATOR_PATH_PREFIXES


def _parse_body(raw: bytes, content_type: str) -> Optional[Any]:
    if not raw or "application/json" not in content_type:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        return None


async def build_inbound(request: Request) -> InboundRequest:
    raw = await request.body()
    return InboundRequest(
        method=request.method,
        path=request.url.path,
        headers=dict(request.headers),
        body=_parse_body(raw, request.headers.get("content-type", "")),
        raw_body=raw,
        query_items=list(request.query_params.multi_items()),
        client_host=request.client.host if request.client else None,
        scheme=request.url.scheme,
        host=request.headers.get("host"),
    )


def to_client_response(outbound: OutboundResponse) -> Response:
    if outbound.is_json:
        content = json.dumps(outbound.body).encode("utf-8")
    elif isinstance(outbound.body, str):
        content = outbound.body.encode("utf-8")
    else:
        content = outbound.body or b""

    response = Response(content=content, status_code=outbound.status_code)
    for key, value in relay_headers(outbound.headers):
        response.headers.append(key, value)
    return response


@router.api_route("/{full_path:path}", methods=PROXY_METHODS)
async def proxy_request(
    request: Request,
    full_path: str,
    routing: RoutingService = Depends(get_router),
    registry: ServiceRegistry = Depends(get_registry),
    forwarder: ProxyForwarder = Depends(get_forwarder),
):
    """Route and forward a request addressed to a registered service."""
    if is_coordinator_path(request.url.path):
        # Coordinator endpoint with an unsupported method or sub-path
        raise HTTPException(status_code=404)

    inbound = await build_inbound(request)
    query = build_query_from_request(inbound.method, inbound.path, inbound.body, inbound.query_params)

    logger.info("proxy_routing_request", query=query, method=inbound.method, path=inbound.path)

    decision = await routing.route(query, {
        "method": inbound.method,
        "path": inbound.path,
        "body": inbound.body,
        "query": inbound.query_params,
    })

    if not decision.success or not decision.service_name:
        raise NoMatchError(
            "No suitable microservice found for this request",
            available_services=[s.to_wire() for s in await registry.list_summaries()],
            query=query,
        )

    target = await registry.get_by_name(decision.service_name)
    if target is None:
        raise NoMatchError(f"Service {decision.service_name} not found in registry")

    try:
        outbound = await forwarder.forward(inbound, target)
    except ForwardError as e:
        logger.error(
            "proxy_request_failed",
            method=inbound.method,
            path=inbound.path,
            target_service=target.service_name,
            error=e.message,
        )
        return JSONResponse(
            status_code=e.status_code,
            content={
                "success": False,
                "message": "Failed to proxy request to microservice",
                "error": e.message,
            },
        )

    logger.info(
        "proxy_request_completed",
        method=inbound.method,
        path=inbound.path,
        target_service=target.service_name,
        status_code=outbound.status_code,
        routing_source=decision.source,
    )
    return to_client_response(outbound)

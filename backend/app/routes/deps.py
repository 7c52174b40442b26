"""
FastAPI dependencies giving route handlers access to the components built
at startup.
"""
from typing import Any

from fastapi import Request

from app.core.errors import ValidationError
from app.core.sanitize import sanitize_payload
from app.services.graph.cache import KnowledgeGraphCache
from app.services.proxy.forwarder import ProxyForwarder
from app.services.registry import ServiceRegistry
from app.services.routing.router import RoutingService
from app.services.uiux import UIUXConfigService
from app.wiring import Components


def get_components(request: Request) -> Components:
    return request.app.state.components


def get_registry(request: Request) -> ServiceRegistry:
    return get_components(request).registry


def get_graph_cache(request: Request) -> KnowledgeGraphCache:
    return get_components(request).graph_cache


def get_router(request: Request) -> RoutingService:
    return get_components(request).router


def get_forwarder(request: Request) -> ProxyForwarder:
    return get_components(request).forwarder


def get_uiux(request: Request) -> UIUXConfigService:
    return get_components(request).uiux


async def sanitized_json_body(request: Request) -> Any:
    """
    Parsed and sanitized JSON body.

    An empty body is treated as {}. Malformed JSON is a validation error.
    """
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = await request.json()
    except ValueError as e:
        raise ValidationError(["Request body must be valid JSON"], message="Invalid JSON body") from e
    return sanitize_payload(payload)

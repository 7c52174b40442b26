"""
Routing endpoints.

POST /route   body: {query | intent, method?, path?, body?}
GET  /route?q=... (or query=..., intent=...)

Answers 200 with the routing decision, or 404 with the list of available
services when nothing matches.
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.core.logging import get_logger
from app.models.routing import RoutingDecision
from app.routes.deps import get_router, sanitized_json_body
from app.services.routing.router import RoutingService

logger = get_logger(__name__)
router = APIRouter()


def _decision_response(decision: RoutingDecision) -> JSONResponse:
    status_code = 200 if decision.success else 404
    return JSONResponse(status_code=status_code, content=decision.to_response())


def _missing_query(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@router.post("")
async def route_request(
    request: Request,
    payload: Any = Depends(sanitized_json_body),
    routing: RoutingService = Depends(get_router),
):
    """Decide which registered service should handle a described request."""
    if not isinstance(payload, dict):
        payload = {}

    user_query = payload.get("query") or payload.get("intent")
    if not user_query or not isinstance(user_query, str):
        return _missing_query('Either "query" or "intent" is required')

    context = {
        "method": payload.get("method") or request.method,
        "path": payload.get("path") or request.url.path,
        "body": payload.get("body") or payload,
    }
    logger.info("routing_request", query=user_query, method=context["method"], path=context["path"])

    decision = await routing.route(user_query, context)
    return _decision_response(decision)


@router.get("")
async def route_query(
    request: Request,
    q: Optional[str] = Query(None, description="Routing query"),
    query: Optional[str] = Query(None, description="Alias of q"),
    intent: Optional[str] = Query(None, description="Alias of q"),
    routing: RoutingService = Depends(get_router),
):
    user_query = (q or query or intent or "").strip()
    if not user_query:
        return _missing_query('Query parameter "q", "query", or "intent" is required')

    logger.info("routing_request", query=user_query, method="GET", path=request.url.path)

    decision = await routing.route(user_query, {"method": "GET", "path": request.url.path})
    return _decision_response(decision)

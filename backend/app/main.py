from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import Settings, get_settings
from .core.errors import CoordinatorError, GraphRebuildError, NoMatchError, ValidationError
from .core.logging import configure_logging, get_logger, get_trace_id
from .core.metrics import update_registered_services
from .core.middleware import PathSanitizerMiddleware, TraceIDMiddleware
from .core.tracing import (
    configure_tracing,
    instrument_fastapi,
    shutdown_tracing,
    get_trace_id_from_context,
    record_exception,
    set_span_status,
    StatusCode,
)
from .routes import health, knowledge_graph, metrics, proxy, register, route, services, uiux
from .wiring import Components, build_components

NOT_FOUND_HINT = "Make sure the URL does not contain trailing spaces or newlines. Try: POST /register"

ROOT_DESCRIPTOR = {
    "service": "Coordinator Microservice",
    "version": "1.0.0",
    "status": "running",
    "endpoints": {
        "register": "POST /register",
        "route": "GET /route, POST /route (AI-based routing)",
        "knowledgeGraph": "GET /knowledge-graph, GET /graph",
        "uiux": "GET /uiux, POST /uiux",
        "services": "GET /services, GET /registry",
        "health": "GET /health",
        "metrics": "GET /metrics",
        "proxy": "All other routes are proxied through AI routing",
    },
}

logger = get_logger(__name__)


def _trace_id(request: Request) -> Optional[str]:
    return (
        get_trace_id()
        or getattr(request.state, "trace_id", None)
        or get_trace_id_from_context()
    )


def _error_response(request: Request, status_code: int, content: dict) -> JSONResponse:
    trace_id = _trace_id(request)
    response = JSONResponse(status_code=status_code, content={**content, "trace_id": trace_id})
    if trace_id:
        response.headers["X-Trace-ID"] = trace_id
    return response


def register_exception_handlers(app: FastAPI, settings: Settings) -> None:
    @app.exception_handler(ValidationError)
    async def validation_error_handler(request: Request, exc: ValidationError):
        logger.warning(
            "validation_failed",
            path=request.url.path,
            method=request.method,
            errors=exc.errors,
        )
        return _error_response(request, exc.status_code, {
            "success": False,
            "message": exc.message,
            "errors": exc.errors,
        })

    @app.exception_handler(NoMatchError)
    async def no_match_handler(request: Request, exc: NoMatchError):
        logger.info("no_matching_service", path=request.url.path, method=request.method, query=exc.query)
        content = {"success": False, "message": exc.message}
        if exc.query is not None:
            content["query"] = exc.query
        content["availableServices"] = exc.available_services
        return _error_response(request, exc.status_code, content)

    @app.exception_handler(CoordinatorError)
    async def coordinator_error_handler(request: Request, exc: CoordinatorError):
        """Handle coordinator errors mapped to their own status codes."""
        record_exception(exc)
        set_span_status(StatusCode.ERROR, exc.message)
        logger.error(
            "coordinator_error",
            error=exc.message,
            error_type=type(exc).__name__,
            status_code=exc.status_code,
            path=request.url.path,
            method=request.method,
        )
        hide_detail = settings.is_production and exc.status_code >= 500
        return _error_response(request, exc.status_code, {
            "success": False,
            "message": "Internal server error" if hide_detail else exc.message,
        })

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        """Handle HTTP exceptions."""
        set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, str(exc.detail))
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method,
        )
        if exc.status_code == 404:
            return _error_response(request, 404, {
                "success": False,
                "message": f"Route {request.method} {request.url.path} not found",
                "hint": NOT_FOUND_HINT,
            })
        return _error_response(request, exc.status_code, {
            "success": False,
            "message": exc.detail,
        })

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        """Handle general exceptions."""
        record_exception(exc)
        set_span_status(StatusCode.ERROR, str(exc))
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        return _error_response(request, 500, {
            "success": False,
            "message": "Internal server error" if settings.is_production else str(exc),
        })


def create_app(settings: Optional[Settings] = None, components: Optional[Components] = None) -> FastAPI:
    """
    Build the coordinator application.

    Args:
        settings: Runtime settings (defaults to the environment)
        components: Pre-built components; tests pass stores, oracle and
            proxy transport of their own

    Returns:
        FastAPI application with all coordinator routes and the catch-all proxy
    """
    settings = settings or (components.settings if components else get_settings())
    components = components or build_components(settings)

    app = FastAPI(
        title="Service Coordinator",
        description="Service registry, knowledge graph and AI-assisted request routing",
        version="1.0.0",
    )
    app.state.components = components

    # CORS for local dev; restrict in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add trace ID middleware (must be after CORS middleware)
    app.add_middleware(TraceIDMiddleware)

    # Outermost: the path is cleaned before anything routes on it
    app.add_middleware(PathSanitizerMiddleware)

    instrument_fastapi(app)
    register_exception_handlers(app, settings)

    @app.on_event("startup")
    async def startup_event():
        """Build the initial knowledge graph."""
        logger.info(
            "app_startup_started",
            environment=settings.environment,
            storage_backend=components.registry.store.backend_name,
            oracle_configured=components.oracle.configured,
        )
        update_registered_services(components.registry.count())
        try:
            await components.graph_cache.rebuild()
            logger.info("app_startup_knowledge_graph_ready")
        except GraphRebuildError as e:
            logger.warning("app_startup_knowledge_graph_unavailable", error=e.message)
        logger.info("app_startup_completed")

    @app.on_event("shutdown")
    async def shutdown_event():
        """Wait for background rebuilds and flush spans."""
        logger.info("app_shutdown_started")
        await components.registry.drain()
        shutdown_tracing()
        logger.info("app_shutdown_completed")

    @app.get("/", tags=["Root"])
    async def root():
        return ROOT_DESCRIPTOR

    app.include_router(register.router, prefix="/register", tags=["Registry"])
    app.include_router(uiux.router, prefix="/uiux", tags=["UI/UX"])
    app.include_router(services.router, prefix="/services", tags=["Registry"])
    app.include_router(services.router, prefix="/registry", tags=["Registry"])
    app.include_router(route.router, prefix="/route", tags=["Routing"])
    app.include_router(knowledge_graph.router, prefix="/knowledge-graph", tags=["Knowledge Graph"])
    app.include_router(knowledge_graph.router, prefix="/graph", tags=["Knowledge Graph"])
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])
    # Must stay last: matches every path
    app.include_router(proxy.router, tags=["Proxy"])

    return app


# Configure structured logging
# Use JSON output in production (containerized), console output in development
_settings = get_settings()
configure_logging(log_level=_settings.log_level, json_output=_settings.log_json)

# Configure distributed tracing; spans are exported only when an OTLP endpoint is set
configure_tracing(service_name=_settings.otel_service_name, otlp_endpoint=_settings.otlp_endpoint)

app = create_app(_settings)

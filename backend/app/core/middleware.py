"""
Request middleware.

TraceIDMiddleware:
- Resolves the request's trace ID (X-Trace-ID, then X-Request-ID, then the
  OpenTelemetry trace, then a new one) and a fresh request ID
- Binds both to the logging context for the duration of the request
- Records RED metrics and logs request start/completion
- Echoes both IDs in the X-Trace-ID / X-Request-ID response headers

PathSanitizerMiddleware:
- Removes CR/LF characters and trailing whitespace from the request path so
  that copy-pasted URLs still reach the intended route
"""
import time
from typing import Callable, Optional
from urllib.parse import quote

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp, Receive, Scope, Send

from .logging import bind_request_context, get_logger, new_correlation_id, reset_request_context
from .metrics import record_http_request
from .tracing import (
    StatusCode,
    get_trace_id_from_context,
    get_tracer,
    record_exception,
    set_span_attribute,
    set_span_status,
)

logger = get_logger(__name__)

TRACE_ID_HEADER = "X-Trace-ID"
REQUEST_ID_HEADER = "X-Request-ID"


def format_otel_trace_id(otel_trace_id: str) -> str:
    """Render a 32-hex OpenTelemetry trace ID in UUID layout."""
    if len(otel_trace_id) != 32:
        return otel_trace_id
    return "-".join((
        otel_trace_id[0:8],
        otel_trace_id[8:12],
        otel_trace_id[12:16],
        otel_trace_id[16:20],
        otel_trace_id[20:32],
    ))


def resolve_trace_id(request: Request) -> str:
    incoming = request.headers.get(TRACE_ID_HEADER) or request.headers.get(REQUEST_ID_HEADER)
    if incoming:
        return incoming
    otel_trace_id = get_trace_id_from_context()
    return format_otel_trace_id(otel_trace_id) if otel_trace_id else new_correlation_id()


class TraceIDMiddleware(BaseHTTPMiddleware):
    """Correlation IDs, request span, RED metrics and access logs."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        trace_id = resolve_trace_id(request)
        request_id = new_correlation_id()
        tokens = bind_request_context(trace_id, request_id)

        # Exception handlers outside this middleware read the trace ID from here
        request.state.trace_id = trace_id

        with get_tracer().start_as_current_span("http.request"):
            set_span_attribute("http.method", request.method)
            set_span_attribute("http.route", request.url.path)
            set_span_attribute("coordinator.trace_id", trace_id)

            started = time.time()
            logger.info(
                "request_started",
                method=request.method,
                path=request.url.path,
                client_host=request.client.host if request.client else None,
            )

            try:
                response = await call_next(request)
            except Exception as e:
                record_exception(e)
                self._finish(request, 500, started, error=e)
                raise
            else:
                self._finish(request, response.status_code, started)
                response.headers[TRACE_ID_HEADER] = trace_id
                response.headers[REQUEST_ID_HEADER] = request_id
                return response
            finally:
                reset_request_context(tokens)

    @staticmethod
    def _finish(request: Request, status_code: int, started: float, error: Optional[Exception] = None) -> None:
        duration = time.time() - started
        latency_ms = int(duration * 1000)

        set_span_attribute("http.status_code", status_code)
        if status_code >= 500:
            set_span_status(StatusCode.ERROR, str(error) if error else None)

        record_http_request(
            method=request.method,
            endpoint=request.url.path,
            status_code=status_code,
            duration_seconds=duration,
        )

        if error is not None:
            logger.error(
                "request_failed",
                method=request.method,
                path=request.url.path,
                error=str(error),
                error_type=type(error).__name__,
                latency_ms=latency_ms,
            )
            return

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=status_code,
            latency_ms=latency_ms,
        )


class PathSanitizerMiddleware:
    """Strip newlines and trailing whitespace from the request path."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http":
            path = scope.get("path", "")
            cleaned = path.replace("\n", "").replace("\r", "").rstrip() or "/"
            if cleaned != path:
                logger.debug("request_path_sanitized", original=path, cleaned=cleaned)
                scope = dict(scope)
                scope["path"] = cleaned
                scope["raw_path"] = quote(cleaned).encode("ascii")
        await self.app(scope, receive, send)

"""
OpenTelemetry tracing for the coordinator.

Spans cover the coordinator's own work (graph rebuilds, routing decisions,
forwarding) and, through FastAPI instrumentation, every inbound request.
When a request is proxied, the W3C traceparent header is injected so the
target service can continue the same trace.

Configuration:
- OTEL_SERVICE_NAME: Service name (default: coordinator)
- OTEL_EXPORTER_OTLP_ENDPOINT: OTLP gRPC endpoint (e.g. http://localhost:4317).
  Without it spans are created and propagated but not exported.
- OTEL_TRACES_SAMPLER_ARG: Sampling ratio for new root traces (default: 1.0)
"""
import os
from typing import Any, MutableMapping, Optional

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Status, StatusCode, Tracer
from opentelemetry.trace.propagation.tracecontext import TraceContextTextMapPropagator

from .logging import get_logger

logger = get_logger(__name__)

__all__ = [
    "StatusCode",
    "configure_tracing",
    "get_tracer",
    "inject_trace_context",
    "get_trace_id_from_context",
    "set_span_attribute",
    "set_span_status",
    "record_exception",
    "instrument_fastapi",
    "shutdown_tracing",
]

TRACER_NAME = "coordinator"

_propagator = TraceContextTextMapPropagator()
_tracer_provider: Optional[TracerProvider] = None


def configure_tracing(
    service_name: Optional[str] = None,
    otlp_endpoint: Optional[str] = None,
    sampling_rate: float = 1.0,
) -> None:
    """
    Install the SDK tracer provider.

    Sampling follows the caller's decision when an inbound request already
    carries a sampled traceparent; only new root traces use sampling_rate.

    Args:
        service_name: Defaults to OTEL_SERVICE_NAME, then "coordinator"
        otlp_endpoint: Defaults to OTEL_EXPORTER_OTLP_ENDPOINT
        sampling_rate: Overridden by OTEL_TRACES_SAMPLER_ARG when set
    """
    global _tracer_provider

    service_name = service_name or os.getenv("OTEL_SERVICE_NAME", "coordinator")
    otlp_endpoint = otlp_endpoint or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    sampling_rate = float(os.getenv("OTEL_TRACES_SAMPLER_ARG", str(sampling_rate)))

    _tracer_provider = TracerProvider(
        resource=Resource.create({"service.name": service_name, "service.version": "1.0.0"}),
        sampler=ParentBased(TraceIdRatioBased(sampling_rate)),
    )

    if otlp_endpoint:
        try:
            _tracer_provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=otlp_endpoint)))
        except Exception as e:
            logger.warning(
                "tracing_otlp_configuration_failed",
                endpoint=otlp_endpoint,
                error=str(e),
                error_type=type(e).__name__,
            )
            otlp_endpoint = None

    trace.set_tracer_provider(_tracer_provider)

    logger.info(
        "tracing_configured",
        service_name=service_name,
        sampling_rate=sampling_rate,
        otlp_endpoint=otlp_endpoint,
    )


def get_tracer() -> Tracer:
    return trace.get_tracer(TRACER_NAME)


def inject_trace_context(headers: MutableMapping[str, str]) -> None:
    """Add the current span's traceparent (and tracestate) to outbound headers."""
    if trace.get_current_span().get_span_context().is_valid:
        _propagator.inject(headers)


def get_trace_id_from_context() -> Optional[str]:
    """Trace ID of the current span as 32 hex characters, or None."""
    span_context = trace.get_current_span().get_span_context()
    if not span_context.is_valid:
        return None
    return format(span_context.trace_id, "032x")


def set_span_attribute(key: str, value: Any) -> None:
    trace.get_current_span().set_attribute(key, value)


def set_span_status(status_code: StatusCode, description: Optional[str] = None) -> None:
    trace.get_current_span().set_status(Status(status_code, description))


def record_exception(exception: BaseException) -> None:
    """Record an exception on the current span and mark the span as failed."""
    span = trace.get_current_span()
    span.record_exception(exception)
    span.set_status(Status(StatusCode.ERROR, str(exception)))


def instrument_fastapi(app) -> None:
    try:
        FastAPIInstrumentor.instrument_app(app)
    except Exception as e:
        logger.warning(
            "tracing_fastapi_instrumentation_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def shutdown_tracing() -> None:
    """Flush pending spans."""
    if _tracer_provider is None:
        return
    try:
        _tracer_provider.force_flush()
    except Exception as e:
        logger.warning("tracing_flush_failed", error=str(e), error_type=type(e).__name__)

"""
Prometheus metrics collection module.

Metrics Categories:
- RED Metrics: Rate, Errors, Duration of coordinator HTTP traffic
- Registry Metrics: registered services, registration attempts and failures
- Knowledge Graph Metrics: rebuilds, current version, cache hits/misses
- Routing Metrics: routing decisions by source, oracle calls
- Proxy Metrics: forwarded requests and their latency
- Resource Metrics: CPU, memory

All metrics follow Prometheus naming conventions:
- Counters: _total suffix
- Histograms: _seconds suffix for duration
- Gauges: No special suffix
"""
import time

import psutil
from prometheus_client import (
    Counter,
    Histogram,
    Gauge,
    generate_latest,
    REGISTRY,
    CONTENT_TYPE_LATEST,
)

from app.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

_START_TIME = time.time()

# First path segments served by the coordinator itself. Anything else is
# proxied and collapsed into a single label to bound cardinality.
COORDINATOR_PATH_PREFIXES = (
    "register",
    "services",
    "registry",
    "route",
    "knowledge-graph",
    "graph",
    "uiux",
    "health",
    "metrics",
)

# Fixed second segments served under a coordinator prefix
COORDINATOR_SUBPATHS = ("rebuild",)

# ============================================================================
# RED METRICS - Rate, Errors, Duration
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_errors_total = Counter(
    "http_errors_total",
    "Total number of HTTP errors",
    ["method", "endpoint", "status_code"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# REGISTRY METRICS
# ============================================================================

registered_services_total = Gauge(
    "coordinator_registered_services_total",
    "Total number of registered services",
    registry=registry,
)

registration_requests_total = Counter(
    "coordinator_registration_requests_total",
    "Total number of registration requests",
    registry=registry,
)

registration_failures_total = Counter(
    "coordinator_registration_failures_total",
    "Total number of failed registration attempts",
    registry=registry,
)

uiux_config_fetches_total = Counter(
    "coordinator_uiux_config_fetches_total",
    "Total number of UI/UX config fetch requests",
    registry=registry,
)

uptime_seconds = Gauge(
    "coordinator_uptime_seconds",
    "Coordinator uptime in seconds",
    registry=registry,
)

# ============================================================================
# KNOWLEDGE GRAPH METRICS
# ============================================================================

knowledge_graph_rebuilds_total = Counter(
    "knowledge_graph_rebuilds_total",
    "Total number of knowledge graph rebuilds",
    ["outcome"],  # "success", "failure"
    registry=registry,
)

knowledge_graph_version = Gauge(
    "knowledge_graph_version",
    "Version of the knowledge graph currently cached",
    registry=registry,
)

knowledge_graph_persist_failures_total = Counter(
    "knowledge_graph_persist_failures_total",
    "Total number of knowledge graph snapshots that could not be persisted",
    registry=registry,
)

cache_hits_total = Counter(
    "cache_hits_total",
    "Total number of cache hits",
    ["cache_type"],
    registry=registry,
)

cache_misses_total = Counter(
    "cache_misses_total",
    "Total number of cache misses",
    ["cache_type"],
    registry=registry,
)

# ============================================================================
# ROUTING METRICS
# ============================================================================

routing_decisions_total = Counter(
    "routing_decisions_total",
    "Total number of routing decisions",
    ["source", "success"],  # source: "ai", "knowledge_graph", "keyword", "none"
    registry=registry,
)

oracle_requests_total = Counter(
    "oracle_requests_total",
    "Total number of routing oracle requests",
    ["model"],
    registry=registry,
)

oracle_errors_total = Counter(
    "oracle_errors_total",
    "Total number of routing oracle failures",
    ["reason"],  # "missing_api_key", "timeout", "http_error", "invalid_json", ...
    registry=registry,
)

oracle_request_duration_seconds = Histogram(
    "oracle_request_duration_seconds",
    "Routing oracle request latency in seconds",
    ["model"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# PROXY METRICS
# ============================================================================

proxy_requests_total = Counter(
    "proxy_requests_total",
    "Total number of requests forwarded to registered services",
    ["target_service", "outcome"],  # outcome: "success", "timeout", "transport_error"
    registry=registry,
)

proxy_request_duration_seconds = Histogram(
    "proxy_request_duration_seconds",
    "Latency of forwarded requests in seconds",
    ["target_service"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# RESOURCE METRICS
# ============================================================================

system_cpu_usage_percent = Gauge(
    "system_cpu_usage_percent",
    "System CPU usage percentage",
    registry=registry,
)

system_memory_usage_bytes = Gauge(
    "system_memory_usage_bytes",
    "System memory usage in bytes",
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Normalize endpoint path for metrics.

    Coordinator endpoints keep their first segment and known sub-paths;
    unknown sub-paths collapse to "/<segment>/{sub}" and proxied paths,
    which are arbitrary, collapse to "/{proxied}".

    Examples:
        /knowledge-graph/rebuild -> /knowledge-graph/rebuild
        /health/anything -> /health/{sub}
        /route?q=users -> /route
        /users/42/orders -> /{proxied}
    """
    if "?" in path:
        path = path.split("?")[0]

    if path in ("", "/"):
        return "/"

    segments = path.strip("/").split("/")
    if segments[0] in COORDINATOR_PATH_PREFIXES:
        if len(segments) == 1:
            return f"/{segments[0]}"
        if len(segments) >= 3 and segments[1] == "related":
            return f"/{segments[0]}/related/{{service_name}}"
        if len(segments) == 2 and segments[1] in COORDINATOR_SUBPATHS:
            return f"/{segments[0]}/{segments[1]}"
        return f"/{segments[0]}/{{sub}}"

    return "/{proxied}"


def record_http_request(
    method: str,
    endpoint: str,
    status_code: int,
    duration_seconds: float,
) -> None:
    """Record HTTP request metrics (RED metrics)."""
    normalized_endpoint = normalize_endpoint(endpoint)

    http_requests_total.labels(
        method=method,
        endpoint=normalized_endpoint,
        status=str(status_code),
    ).inc()

    if status_code >= 400:
        http_errors_total.labels(
            method=method,
            endpoint=normalized_endpoint,
            status_code=str(status_code),
        ).inc()

    http_request_duration_seconds.labels(
        method=method,
        endpoint=normalized_endpoint,
    ).observe(duration_seconds)


def record_registration(success: bool) -> None:
    """Record a registration attempt and, if it failed, a failure."""
    registration_requests_total.inc()
    if not success:
        registration_failures_total.inc()


def update_registered_services(count: int) -> None:
    registered_services_total.set(count)


def record_uiux_config_fetch() -> None:
    uiux_config_fetches_total.inc()


def get_uptime_seconds() -> int:
    """Seconds since the metrics module was loaded (process start)."""
    return int(time.time() - _START_TIME)


def record_graph_rebuild(success: bool, version: int = 0) -> None:
    """Record a knowledge graph rebuild outcome."""
    knowledge_graph_rebuilds_total.labels(outcome="success" if success else "failure").inc()
    if success:
        knowledge_graph_version.set(version)


def record_graph_persist_failure() -> None:
    knowledge_graph_persist_failures_total.inc()


def record_cache_hit(cache_type: str) -> None:
    cache_hits_total.labels(cache_type=cache_type).inc()


def record_cache_miss(cache_type: str) -> None:
    cache_misses_total.labels(cache_type=cache_type).inc()


def record_routing_decision(source: str, success: bool) -> None:
    routing_decisions_total.labels(source=source, success=str(success).lower()).inc()


def record_oracle_request(model: str, duration_seconds: float) -> None:
    oracle_requests_total.labels(model=model).inc()
    oracle_request_duration_seconds.labels(model=model).observe(duration_seconds)


def record_oracle_error(reason: str) -> None:
    oracle_errors_total.labels(reason=reason).inc()


def record_proxy_request(target_service: str, outcome: str, duration_seconds: float) -> None:
    """Record a forwarded request and its latency."""
    proxy_requests_total.labels(target_service=target_service, outcome=outcome).inc()
    proxy_request_duration_seconds.labels(target_service=target_service).observe(duration_seconds)


def update_resource_metrics() -> None:
    """
    Update system resource metrics (CPU, memory).

    Called on demand when metrics are scraped.
    """
    try:
        system_cpu_usage_percent.set(psutil.cpu_percent(interval=None))
        system_memory_usage_bytes.set(psutil.virtual_memory().used)
    except Exception as e:
        logger.warning(
            "metrics_resource_update_failed",
            error=str(e),
            error_type=type(e).__name__,
        )


def get_metrics() -> bytes:
    """Get Prometheus metrics in text format."""
    update_resource_metrics()
    uptime_seconds.set(get_uptime_seconds())
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

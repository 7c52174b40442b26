"""
HTTP forwarding to registered services.

Builds the outbound request from the inbound one, sends it under a single
deadline covering the whole exchange (httpx timeouts apply per read), and
maps the downstream answer back into something the API layer can relay.
No retries: a timeout or transport failure is reported to the caller as a
ForwardError.
"""
import asyncio
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlencode

import httpx

from app.core.errors import ForwardTimeoutError, ForwardTransportError
from app.core.logging import get_logger
from app.core.metrics import record_proxy_request
from app.core.tracing import get_tracer, inject_trace_context, record_exception
from app.models.service import ServiceRecord

logger = get_logger(__name__)

BODY_METHODS = {"POST", "PUT", "PATCH"}

# Hop-by-hop and framing headers; never copied from the inbound request
REQUEST_HEADER_EXCLUDES = {
    "host",
    "connection",
    "content-length",
    "transfer-encoding",
    "te",
    "trailer",
    "keep-alive",
    "upgrade",
    "proxy-connection",
}

# Never relayed back to the client; the body is re-serialized
RESPONSE_HEADER_EXCLUDES = {"connection", "transfer-encoding", "content-encoding", "content-length"}


@dataclass
class InboundRequest:
    """The parts of a client request needed to forward it."""

    method: str
    path: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Any = None
    raw_body: bytes = b""
    query_items: List[Tuple[str, str]] = field(default_factory=list)
    client_host: Optional[str] = None
    scheme: str = "http"
    host: Optional[str] = None

    @property
    def query_params(self) -> Dict[str, str]:
        return dict(self.query_items)


@dataclass
class OutboundResponse:
    """A downstream answer, ready to relay."""

    status_code: int
    headers: List[Tuple[str, str]]
    body: Any
    is_json: bool = False


def relay_headers(headers: Iterable[Tuple[str, str]]) -> List[Tuple[str, str]]:
    """Drop hop-by-hop and framing headers from a downstream response."""
    return [(k, v) for k, v in headers if k.lower() not in RESPONSE_HEADER_EXCLUDES]


def build_target_url(endpoint: str, path: str, query_items: Optional[List[Tuple[str, str]]] = None) -> str:
    url = endpoint.rstrip("/") + path
    if query_items:
        url = f"{url}?{urlencode(query_items)}"
    return url


class ProxyForwarder:
    """Forwards inbound requests to a chosen service."""

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        coordinator_name: str = "coordinator",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout_seconds = timeout_seconds
        self.coordinator_name = coordinator_name
        self.transport = transport

    def build_headers(self, inbound: InboundRequest, target: ServiceRecord) -> Dict[str, str]:
        headers = {
            k: v for k, v in inbound.headers.items()
            if k.lower() not in REQUEST_HEADER_EXCLUDES
        }
        headers["X-Forwarded-For"] = inbound.client_host or ""
        headers["X-Forwarded-Proto"] = inbound.scheme
        headers["X-Forwarded-Host"] = inbound.host or ""
        headers["X-Coordinator-Service"] = self.coordinator_name
        headers["X-Target-Service"] = target.service_name
        inject_trace_context(headers)
        return headers

    def build_content(self, inbound: InboundRequest, headers: Dict[str, str]) -> Optional[bytes]:
        if inbound.method.upper() not in BODY_METHODS:
            return None

        if inbound.body is not None:
            for key in [k for k in headers if k.lower() == "content-type"]:
                del headers[key]
            headers["Content-Type"] = "application/json"
            return json.dumps(inbound.body).encode("utf-8")

        return inbound.raw_body or None

    async def forward(self, inbound: InboundRequest, target: ServiceRecord) -> OutboundResponse:
        """
        Send `inbound` to `target` and return its answer.

        Raises:
            ForwardTimeoutError: No answer within the proxy timeout
            ForwardTransportError: Connection-level failure
        """
        url = build_target_url(target.endpoint, inbound.path, inbound.query_items)
        method = inbound.method.upper()

        tracer = get_tracer()
        with tracer.start_as_current_span("proxy.forward") as span:
            span.set_attribute("http.method", method)
            span.set_attribute("http.url", url)
            span.set_attribute("proxy.target_service", target.service_name)

            headers = self.build_headers(inbound, target)
            content = self.build_content(inbound, headers)

            logger.info(
                "proxy_forwarding",
                method=method,
                path=inbound.path,
                target_url=url,
                service_name=target.service_name,
            )

            start = time.time()
            try:
                async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self.transport) as client:
                    response = await asyncio.wait_for(
                        client.request(method, url, headers=headers, content=content),
                        timeout=self.timeout_seconds,
                    )
            except (httpx.TimeoutException, asyncio.TimeoutError) as e:
                record_proxy_request(target.service_name, "timeout", time.time() - start)
                record_exception(e)
                logger.error(
                    "proxy_forward_timeout",
                    target_url=url,
                    service_name=target.service_name,
                    timeout_seconds=self.timeout_seconds,
                )
                raise ForwardTimeoutError(
                    f"Request timeout after {self.timeout_seconds}s",
                    target_url=url,
                    service_name=target.service_name,
                ) from e
            except httpx.HTTPError as e:
                record_proxy_request(target.service_name, "transport_error", time.time() - start)
                record_exception(e)
                logger.error(
                    "proxy_forward_failed",
                    target_url=url,
                    service_name=target.service_name,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise ForwardTransportError(
                    f"Failed to forward request: {e}",
                    target_url=url,
                    service_name=target.service_name,
                ) from e

            duration = time.time() - start
            record_proxy_request(target.service_name, "success", duration)
            span.set_attribute("http.status_code", response.status_code)

            logger.info(
                "proxy_forwarded",
                method=method,
                path=inbound.path,
                service_name=target.service_name,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
            )
            return self._map_response(response)

    @staticmethod
    def _map_response(response: httpx.Response) -> OutboundResponse:
        headers = list(response.headers.multi_items())
        content_type = response.headers.get("content-type", "")

        if "application/json" in content_type:
            try:
                return OutboundResponse(response.status_code, headers, response.json(), is_json=True)
            except ValueError:
                return OutboundResponse(response.status_code, headers, response.text)

        return OutboundResponse(response.status_code, headers, response.content)

"""
Integration tests for trace ID propagation.

Tests verify:
- Trace ID is generated for requests without X-Trace-ID header
- Trace ID is extracted from X-Trace-ID header when present
- Trace ID is included in response headers and error bodies
- Trace context propagates to proxied services
- Request ID is generated for each request
"""
import uuid

import httpx
import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.main import create_app
from app.services.storage.memory import InMemoryGraphSnapshotStore, InMemoryServiceStore
from app.wiring import build_components


class ExplodingServiceStore(InMemoryServiceStore):
    def list_all(self):
        raise RuntimeError("unexpected failure")


def make_app(downstream=None, service_store=None):
    settings = Settings(storage_backend="memory")
    components = build_components(
        settings,
        service_store=service_store or InMemoryServiceStore(),
        snapshot_store=InMemoryGraphSnapshotStore(),
        proxy_transport=httpx.MockTransport(downstream or (lambda request: httpx.Response(200, json={}))),
    )
    return create_app(settings, components)


@pytest.fixture
def client():
    return TestClient(make_app())


class TestTraceIDPropagation:
    """Test trace ID propagation through HTTP requests."""

    def test_trace_id_generated_when_missing(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        trace_id = response.headers["X-Trace-ID"]

        # Should be a valid UUID format
        assert len(trace_id) == 36
        assert trace_id.count("-") == 4

    def test_trace_id_extracted_from_header(self, client):
        custom_trace_id = str(uuid.uuid4())

        response = client.get("/health", headers={"X-Trace-ID": custom_trace_id})

        assert response.status_code == 200
        assert response.headers["X-Trace-ID"] == custom_trace_id

    def test_trace_id_extracted_from_request_id_header(self, client):
        """X-Request-ID is used as the trace ID when X-Trace-ID is absent."""
        custom_trace_id = str(uuid.uuid4())

        response = client.get("/health", headers={"X-Request-ID": custom_trace_id})

        assert response.headers["X-Trace-ID"] == custom_trace_id

    def test_request_ids_are_unique(self, client):
        request_ids = {client.get("/health").headers["X-Request-ID"] for _ in range(5)}

        assert len(request_ids) == 5
        for request_id in request_ids:
            uuid.UUID(request_id)

    def test_trace_id_in_validation_error(self, client):
        custom_trace_id = str(uuid.uuid4())

        response = client.post("/register", json={}, headers={"X-Trace-ID": custom_trace_id})

        assert response.status_code == 400
        assert response.headers["X-Trace-ID"] == custom_trace_id
        assert response.json()["trace_id"] == custom_trace_id

    def test_trace_id_in_not_found_error(self, client):
        custom_trace_id = str(uuid.uuid4())

        response = client.delete("/register", headers={"X-Trace-ID": custom_trace_id})

        assert response.status_code == 404
        assert response.json()["trace_id"] == custom_trace_id

    def test_trace_id_in_500_error_responses(self):
        client = TestClient(make_app(service_store=ExplodingServiceStore()), raise_server_exceptions=False)
        custom_trace_id = str(uuid.uuid4())

        response = client.get("/services", headers={"X-Trace-ID": custom_trace_id})

        assert response.status_code == 500
        data = response.json()
        assert data["success"] is False
        assert data["trace_id"] == custom_trace_id
        assert response.headers["X-Trace-ID"] == custom_trace_id


class TestDownstreamPropagation:
    """Test that proxied requests carry the trace context."""

    def test_traceparent_sent_to_target_service(self):
        sent = []

        def downstream(request):
            sent.append(request)
            return httpx.Response(200, json={"ok": True})

        with TestClient(make_app(downstream)) as client:
            client.post("/register", json={
                "serviceName": "order-service",
                "version": "1.0.0",
                "endpoint": "http://orders:8000",
            })
            client.post("/knowledge-graph/rebuild")

            response = client.get("/orders", headers={"X-Trace-ID": str(uuid.uuid4())})

        assert response.status_code == 200
        assert len(sent) == 1
        traceparent = sent[0].headers["traceparent"]
        assert traceparent.startswith("00-")
        assert len(traceparent.split("-")) == 4

"""
Unit tests for request routing.

Tests verify:
- Oracle output parsing (code fences, strict schema)
- Oracle-first routing and the deterministic fallback chain
- Routing always produces a decision when the oracle fails
- OracleClient error mapping against a mocked transport
- Query and prompt construction helpers
"""
import asyncio
import json

import httpx
import pytest

from app.core.errors import GraphRebuildError, OracleError
from app.services.graph.cache import KnowledgeGraphCache
from app.services.registry import ServiceRegistry
from app.services.routing.oracle import OracleClient
from app.services.routing.router import (
    GRAPH_MATCH_CONFIDENCE,
    KEYWORD_MATCH_CONFIDENCE,
    RoutingService,
    build_query_from_request,
    build_routing_prompt,
    format_services_context,
    infer_service_purpose,
    parse_oracle_output,
)
from app.services.storage.memory import InMemoryGraphSnapshotStore, InMemoryServiceStore


class ScriptedOracle:
    """Oracle double that answers with a fixed reply or raises."""

    def __init__(self, reply=None, error=None):
        self.reply = reply
        self.error = error
        self.prompts = []

    async def complete(self, system_prompt, user_prompt):
        self.prompts.append(user_prompt)
        if self.error is not None:
            raise self.error
        return self.reply


class UnavailableGraph:
    async def get(self, force_rebuild=False):
        raise GraphRebuildError("Failed to rebuild knowledge graph: down")

    async def find_service_by_query(self, text):
        raise GraphRebuildError("Failed to rebuild knowledge graph: down")


def oracle_reply(service_name, confidence=0.9, reasoning="matches"):
    return json.dumps({"serviceName": service_name, "confidence": confidence, "reasoning": reasoning})


@pytest.fixture
def registry():
    return ServiceRegistry(InMemoryServiceStore())


@pytest.fixture
def graph_cache(registry):
    return KnowledgeGraphCache(registry, InMemoryGraphSnapshotStore())


async def register(registry, name, endpoint=None):
    return await registry.register(
        service_name=name,
        version="1.0.0",
        endpoint=endpoint or f"http://{name}:8000",
    )


class TestParseOracleOutput:
    def test_plain_json(self):
        decision = parse_oracle_output(oracle_reply("user-service", 0.95))
        assert decision.service_name == "user-service"
        assert decision.confidence == 0.95

    def test_code_fenced_json(self):
        raw = "```json\n" + oracle_reply("order-service") + "\n```"
        assert parse_oracle_output(raw).service_name == "order-service"

    def test_null_service(self):
        decision = parse_oracle_output('{"serviceName": null, "confidence": 0.0, "reasoning": "No suitable service found"}')
        assert decision.service_name is None

    def test_invalid_json(self):
        with pytest.raises(OracleError) as exc_info:
            parse_oracle_output("I think user-service fits best")
        assert exc_info.value.reason == "malformed_json"
        assert exc_info.value.raw_output == "I think user-service fits best"

    @pytest.mark.parametrize("payload", [
        {"serviceName": "a", "confidence": 0.5},
        {"serviceName": "a", "confidence": 0.5, "reasoning": "x", "extra": True},
        {"serviceName": "a", "confidence": 1.5, "reasoning": "x"},
        {"serviceName": 42, "confidence": 0.5, "reasoning": "x"},
        ["a", 0.5, "x"],
    ])
    def test_schema_mismatch(self, payload):
        with pytest.raises(OracleError) as exc_info:
            parse_oracle_output(json.dumps(payload))
        assert exc_info.value.reason == "schema_mismatch"


class TestOracleRouting:
    @pytest.mark.asyncio
    async def test_oracle_choice_resolved_against_registry(self, registry, graph_cache):
        await register(registry, "user-service", "http://users:4001")
        oracle = ScriptedOracle(reply=oracle_reply("user-service", 0.92, "user profile request"))
        router = RoutingService(graph_cache, registry, oracle)

        decision = await router.route("get user profile", {"method": "GET", "path": "/profile"})

        assert decision.success is True
        assert decision.source == "ai"
        assert decision.service_name == "user-service"
        assert decision.confidence == 0.92
        assert decision.service.endpoint == "http://users:4001"
        assert "user-service (v1.0.0)" in oracle.prompts[0]
        assert "- Path: /profile" in oracle.prompts[0]

    @pytest.mark.asyncio
    async def test_oracle_unknown_service_is_a_no_match(self, registry, graph_cache):
        await register(registry, "user-service")
        router = RoutingService(graph_cache, registry, ScriptedOracle(reply=oracle_reply("ghost-service")))

        decision = await router.route("anything")

        assert decision.success is False
        assert decision.source == "ai"
        assert [s.service_name for s in decision.available_services] == ["user-service"]

    @pytest.mark.asyncio
    async def test_oracle_null_answer_is_a_no_match(self, registry, graph_cache):
        await register(registry, "user-service")
        reply = '{"serviceName": null, "confidence": 0.0, "reasoning": "No suitable service found"}'
        router = RoutingService(graph_cache, registry, ScriptedOracle(reply=reply))

        decision = await router.route("users please")

        assert decision.success is False
        assert decision.source == "ai"
        body = decision.to_response()
        assert body["message"] == "No suitable service found for this request"
        assert body["availableServices"][0]["serviceName"] == "user-service"

    @pytest.mark.asyncio
    async def test_prompt_uses_registry_when_graph_unavailable(self, registry):
        await register(registry, "order-service")
        oracle = ScriptedOracle(reply=oracle_reply("order-service"))
        router = RoutingService(UnavailableGraph(), registry, oracle)

        decision = await router.route("place an order")

        assert decision.success is True
        assert "order-service" in oracle.prompts[0]


class TestFallbackRouting:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        OracleError("LLM API key not configured", reason="missing_api_key"),
        OracleError("Request timed out", reason="timeout"),
        OracleError("bad json", reason="malformed_json"),
    ])
    async def test_oracle_failure_falls_back(self, registry, graph_cache, error):
        await register(registry, "user-service")
        router = RoutingService(graph_cache, registry, ScriptedOracle(error=error))

        decision = await router.route("list users")

        assert decision.success is True
        assert decision.source == "knowledge_graph"
        assert decision.confidence == GRAPH_MATCH_CONFIDENCE
        assert decision.reasoning == "Matched using knowledge graph"

    @pytest.mark.asyncio
    async def test_unparseable_oracle_reply_falls_back(self, registry, graph_cache):
        await register(registry, "order-service")
        router = RoutingService(graph_cache, registry, ScriptedOracle(reply="Route it to order-service."))

        decision = await router.route("cancel my order")

        assert decision.source == "knowledge_graph"
        assert decision.service_name == "order-service"

    @pytest.mark.asyncio
    async def test_keyword_match_when_graph_unavailable(self, registry):
        await register(registry, "payment-service", "http://payments:9000")
        router = RoutingService(UnavailableGraph(), registry, ScriptedOracle(error=OracleError("down")))

        decision = await router.route("refund a payment")

        assert decision.success is True
        assert decision.source == "keyword"
        assert decision.confidence == KEYWORD_MATCH_CONFIDENCE
        assert decision.service.endpoint == "http://payments:9000"

    @pytest.mark.asyncio
    async def test_no_match_lists_available_services(self, registry, graph_cache):
        await register(registry, "user-service")
        await register(registry, "payment-service")
        router = RoutingService(graph_cache, registry, ScriptedOracle(error=OracleError("down")))

        decision = await router.route("weather in paris")

        assert decision.success is False
        assert decision.source == "none"
        assert decision.service is None
        assert {s.service_name for s in decision.available_services} == {"user-service", "payment-service"}
        body = decision.to_response()
        assert body["query"] == "weather in paris"
        assert body["routing"]["source"] == "none"

    @pytest.mark.asyncio
    async def test_empty_registry_no_match(self, registry, graph_cache):
        router = RoutingService(graph_cache, registry, ScriptedOracle(error=OracleError("down")))

        decision = await router.fallback_routing("orders")

        assert decision.success is False
        assert decision.available_services == []


class TestOracleClient:
    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        client = OracleClient("https://llm.test/v1", None, "test-model")
        assert client.configured is False

        with pytest.raises(OracleError) as exc_info:
            await client.complete("system", "user")
        assert exc_info.value.reason == "missing_api_key"

    @pytest.mark.asyncio
    async def test_stalled_oracle_times_out(self):
        async def handler(request):
            await asyncio.sleep(5)
            return httpx.Response(200, json={"choices": [{"message": {"content": "late"}}]})

        client = OracleClient(
            "https://llm.test/v1", "secret", "test-model",
            timeout_seconds=0.2, transport=httpx.MockTransport(handler),
        )

        with pytest.raises(OracleError) as exc_info:
            await client.complete("system", "user")
        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_successful_completion(self):
        seen = {}

        def handler(request):
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["authorization"]
            seen["payload"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "  {\"ok\": true}  "}}]})

        client = OracleClient("https://llm.test/v1/", "secret", "test-model", transport=httpx.MockTransport(handler))

        content = await client.complete("system prompt", "user prompt")

        assert content == '{"ok": true}'
        assert seen["url"] == "https://llm.test/v1/chat/completions"
        assert seen["auth"] == "Bearer secret"
        assert seen["payload"]["model"] == "test-model"
        assert seen["payload"]["temperature"] == 0.3
        assert seen["payload"]["max_tokens"] == 200
        assert [m["role"] for m in seen["payload"]["messages"]] == ["system", "user"]

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503, text="overloaded"))
        client = OracleClient("https://llm.test/v1", "secret", "test-model", transport=transport)

        with pytest.raises(OracleError) as exc_info:
            await client.complete("s", "u")
        assert exc_info.value.reason == "bad_status"
        assert "503" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        client = OracleClient("https://llm.test/v1", "secret", "test-model", transport=httpx.MockTransport(handler))

        with pytest.raises(OracleError) as exc_info:
            await client.complete("s", "u")
        assert exc_info.value.reason == "timeout"

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = OracleClient("https://llm.test/v1", "secret", "test-model", transport=httpx.MockTransport(handler))

        with pytest.raises(OracleError) as exc_info:
            await client.complete("s", "u")
        assert exc_info.value.reason == "http_error"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("body,reason", [
        ({"choices": []}, "malformed_response"),
        ({"unexpected": True}, "malformed_response"),
        ({"choices": [{"message": {"content": "   "}}]}, "empty_response"),
    ])
    async def test_unusable_answers(self, body, reason):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json=body))
        client = OracleClient("https://llm.test/v1", "secret", "test-model", transport=transport)

        with pytest.raises(OracleError) as exc_info:
            await client.complete("s", "u")
        assert exc_info.value.reason == reason


class TestHelpers:
    @pytest.mark.parametrize("name,purpose", [
        ("user-service", "user management, authentication, profiles"),
        ("product-catalog", "product catalog, inventory, search"),
        ("ORDER-api", "order processing, payments, shipping"),
        ("payment-gateway", "payment processing, transactions"),
        ("notification-hub", "notifications, messaging"),
        ("weather-service", "various operations"),
    ])
    def test_infer_service_purpose(self, name, purpose):
        assert infer_service_purpose(name) == purpose

    def test_build_query_from_request(self):
        query = build_query_from_request("post", "/orders", {"item": 1, "qty": 2}, {"debug": "1"})
        assert query == "POST request to /orders with data: item, qty with params: debug"

    def test_build_query_without_body_or_params(self):
        assert build_query_from_request("GET", "/users/42") == "GET request to /users/42"
        assert build_query_from_request("GET", "/users", {}, {}) == "GET request to /users"

    def test_prompt_defaults_and_body(self):
        prompt = build_routing_prompt("find users", [], {"body": {"name": "ada"}})
        assert "No services are currently registered." in prompt
        assert "- HTTP Method: GET" in prompt
        assert "- Path: /" in prompt
        assert '- Body: {"name": "ada"}' in prompt

    @pytest.mark.asyncio
    async def test_format_services_context(self, registry):
        await register(registry, "user-service", "http://users:4001")
        summaries = await registry.list_summaries()

        context = format_services_context(summaries)

        assert context.startswith("1. user-service (v1.0.0)")
        assert "Endpoint: http://users:4001" in context
        assert "Status: active" in context
        assert "Handles user management" in context

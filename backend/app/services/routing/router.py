"""
Request routing.

Chooses the registered service that should handle a request. The oracle is
asked first; when it is unavailable or answers with something unusable, a
deterministic fallback runs once:

1. knowledge graph match (confidence 0.8)
2. keyword match on the first token of each service name (confidence 0.7)
3. structured no-match carrying the full service list

route() never raises for oracle problems: callers always get a decision.
"""
import json
import re
from typing import Any, List, Mapping, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError

from app.core.errors import GraphRebuildError, OracleError, StorageError
from app.core.logging import get_logger
from app.core.metrics import record_oracle_error, record_routing_decision
from app.core.tracing import get_tracer, set_span_attribute
from app.models.routing import OracleDecision, ResolvedService, RoutingDecision
from app.models.service import ServiceRecord, ServiceSummary
from app.services.graph.cache import KnowledgeGraphCache
from app.services.registry import ServiceRegistry
from app.services.routing.oracle import OracleClient

logger = get_logger(__name__)

SYSTEM_PROMPT = "You are an intelligent API router. Respond only with valid JSON."

GRAPH_MATCH_CONFIDENCE = 0.8
KEYWORD_MATCH_CONFIDENCE = 0.7

NO_MATCH_MESSAGE = "No suitable service found for this request"

_SERVICE_PURPOSES = (
    ("user", "user management, authentication, profiles"),
    ("product", "product catalog, inventory, search"),
    ("order", "order processing, payments, shipping"),
    ("payment", "payment processing, transactions"),
    ("notification", "notifications, messaging"),
)

_CODE_FENCE = re.compile(r"```(?:json)?\n?")


def infer_service_purpose(service_name: str) -> str:
    """Describe what a service probably does, judging by its name."""
    name = service_name.lower()
    for keyword, purpose in _SERVICE_PURPOSES:
        if keyword in name:
            return purpose
    return "various operations"


def build_query_from_request(
    method: str,
    path: str,
    body: Any = None,
    query_params: Optional[Mapping[str, Any]] = None,
) -> str:
    """
    Describe a proxied request in natural language for routing.

    Example: "POST request to /orders with data: item, qty with params: debug"
    """
    query = f"{method.upper()} request to {path}"
    if isinstance(body, dict) and body:
        query += f" with data: {', '.join(body.keys())}"
    if query_params:
        query += f" with params: {', '.join(query_params.keys())}"
    return query


def format_services_context(services: Sequence[Any]) -> str:
    if not services:
        return "No services are currently registered."

    blocks = []
    for index, service in enumerate(services, start=1):
        status = getattr(service.status, "value", service.status)
        blocks.append(
            f"{index}. {service.service_name} (v{service.version})\n"
            f"   - Endpoint: {service.endpoint}\n"
            f"   - Status: {status}\n"
            f"   - Description: Handles {infer_service_purpose(service.service_name)}"
        )
    return "\n\n".join(blocks)


def build_routing_prompt(query: str, services: Sequence[Any], context: Optional[Mapping[str, Any]] = None) -> str:
    context = context or {}
    body = context.get("body")
    body_line = f"- Body: {json.dumps(body, default=str)}" if body else ""

    return f"""You are an intelligent API router for a microservices architecture. Your job is to determine which microservice should handle a given request.

Available Microservices:
{format_services_context(services)}

User Request:
- Query/Intent: {query}
- HTTP Method: {context.get("method") or "GET"}
- Path: {context.get("path") or "/"}
{body_line}

Instructions:
1. Analyze the user's request and determine which microservice is most appropriate to handle it.
2. Consider the service name, version, and inferred purpose.
3. Return ONLY a JSON object with this exact format:
{{
  "serviceName": "exact-service-name-from-list",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation"
}}

If no service matches, return:
{{
  "serviceName": null,
  "confidence": 0.0,
  "reasoning": "No suitable service found"
}}

Respond with ONLY the JSON, no additional text."""


def parse_oracle_output(raw: str) -> OracleDecision:
    """
    Parse and validate the oracle's answer.

    Markdown code fences are tolerated; anything that is not exactly the
    expected object is rejected.

    Raises:
        OracleError: Malformed JSON or an object that does not conform
    """
    content = raw.strip()
    if content.startswith("```"):
        content = _CODE_FENCE.sub("", content).strip()

    try:
        payload = json.loads(content)
    except ValueError as e:
        record_oracle_error("malformed_json")
        raise OracleError(f"Oracle returned invalid JSON: {e}", reason="malformed_json", raw_output=raw) from e

    try:
        return OracleDecision.model_validate(payload)
    except PydanticValidationError as e:
        record_oracle_error("schema_mismatch")
        raise OracleError(
            f"Oracle answer does not match the routing schema ({e.error_count()} errors)",
            reason="schema_mismatch",
            raw_output=raw,
        ) from e


class RoutingService:
    """Oracle-first routing with a deterministic fallback."""

    def __init__(
        self,
        graph_cache: KnowledgeGraphCache,
        registry: ServiceRegistry,
        oracle: OracleClient,
    ):
        self.graph_cache = graph_cache
        self.registry = registry
        self.oracle = oracle

    async def _prompt_services(self) -> List[Any]:
        try:
            graph = await self.graph_cache.get()
            return [node.data for node in graph.nodes]
        except GraphRebuildError as e:
            logger.warning("routing_graph_unavailable", error=str(e))
            return await self.registry.list_summaries()

    async def route(self, query: str, context: Optional[Mapping[str, Any]] = None) -> RoutingDecision:
        """
        Decide which service handles `query`.

        Args:
            query: Natural language query or intent
            context: Request context (method, path, body)

        Returns:
            RoutingDecision; success=False when nothing matched
        """
        tracer = get_tracer()
        with tracer.start_as_current_span("routing.route"):
            set_span_attribute("routing.query", query)
            try:
                decision = await self._route_with_oracle(query, context)
            except OracleError as e:
                logger.warning("ai_routing_failed_using_fallback", reason=e.reason, error=e.message, query=query)
                decision = await self.fallback_routing(query)

            set_span_attribute("routing.source", decision.source)
            set_span_attribute("routing.success", decision.success)
            return decision

    async def _route_with_oracle(self, query: str, context: Optional[Mapping[str, Any]]) -> RoutingDecision:
        services = await self._prompt_services()
        prompt = build_routing_prompt(query, services, context)
        raw = await self.oracle.complete(SYSTEM_PROMPT, prompt)
        answer = parse_oracle_output(raw)

        target: Optional[ServiceRecord] = None
        if answer.service_name:
            target = await self.registry.get_by_name(answer.service_name)

        logger.info(
            "ai_routing_decision",
            query=query,
            service_name=answer.service_name,
            confidence=answer.confidence,
            found=target is not None,
        )

        if target is None:
            record_routing_decision("ai", success=False)
            return RoutingDecision(
                success=False,
                service_name=answer.service_name,
                confidence=answer.confidence,
                reasoning=answer.reasoning,
                source="ai",
                message=NO_MATCH_MESSAGE,
                query=query,
                available_services=await self.registry.list_summaries(),
            )

        record_routing_decision("ai", success=True)
        return RoutingDecision(
            success=True,
            service_name=target.service_name,
            confidence=answer.confidence,
            reasoning=answer.reasoning,
            service=ResolvedService.from_record(target),
            source="ai",
            query=query,
        )

    async def fallback_routing(self, query: str) -> RoutingDecision:
        """Rule-based routing used when the oracle cannot answer."""
        try:
            matched = await self.graph_cache.find_service_by_query(query)
        except (GraphRebuildError, StorageError) as e:
            logger.warning("graph_routing_lookup_failed", error=str(e), query=query)
            matched = None

        if matched is not None:
            record_routing_decision("knowledge_graph", success=True)
            return RoutingDecision(
                success=True,
                service_name=matched.service_name,
                confidence=GRAPH_MATCH_CONFIDENCE,
                reasoning="Matched using knowledge graph",
                service=ResolvedService.from_record(matched),
                source="knowledge_graph",
                query=query,
            )

        summaries = await self.registry.list_summaries()
        keyword_match = self._match_keyword(query, summaries)
        if keyword_match is not None:
            record_routing_decision("keyword", success=True)
            return RoutingDecision(
                success=True,
                service_name=keyword_match.service_name,
                confidence=KEYWORD_MATCH_CONFIDENCE,
                reasoning="Matched by keyword",
                service=ResolvedService(
                    endpoint=keyword_match.endpoint,
                    version=keyword_match.version,
                    status=keyword_match.status,
                ),
                source="keyword",
                query=query,
            )

        record_routing_decision("none", success=False)
        logger.info("routing_no_match", query=query, available_services=len(summaries))
        return RoutingDecision(
            success=False,
            reasoning="No matching service found",
            source="none",
            message=NO_MATCH_MESSAGE,
            query=query,
            available_services=summaries,
        )

    @staticmethod
    def _match_keyword(query: str, summaries: Sequence[ServiceSummary]) -> Optional[ServiceSummary]:
        query_lower = query.lower()
        for summary in summaries:
            base = summary.service_name.lower().split("-")[0]
            if base and base in query_lower:
                return summary
        return None

"""
Routing models.

OracleDecision mirrors the JSON object the routing oracle must answer with:
{
  "serviceName": "exact-service-name-from-list" | null,
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation"
}
All three keys are required and nothing else is accepted.
"""
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.service import CamelModel, ServiceRecord, ServiceStatus, ServiceSummary

ROUTING_SOURCES = ("ai", "knowledge_graph", "keyword", "none")


class OracleDecision(CamelModel):
    """Structured output of the routing oracle."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        strict=True,
    )

    service_name: Optional[str] = Field(...)
    confidence: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = Field(...)


class ResolvedService(CamelModel):
    """Subset of a ServiceRecord needed to forward a request."""

    endpoint: str
    version: str
    status: ServiceStatus

    @classmethod
    def from_record(cls, record: ServiceRecord) -> "ResolvedService":
        return cls(endpoint=record.endpoint, version=record.version, status=record.status)


class RoutingDecision(CamelModel):
    """Per-request outcome of routing: a target service or a structured no-match."""

    success: bool
    service_name: Optional[str] = None
    confidence: float = 0.0
    reasoning: str = ""
    service: Optional[ResolvedService] = None
    source: str = "none"
    message: Optional[str] = None
    query: Optional[str] = None
    available_services: List[ServiceSummary] = Field(default_factory=list)

    def to_response(self) -> Dict[str, Any]:
        """API body: routing details on success, service list on failure."""
        routing = {
            "serviceName": self.service_name,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "source": self.source,
            "service": self.service.to_wire() if self.service else None,
        }
        if self.success:
            return {"success": True, "routing": routing}

        return {
            "success": False,
            "message": self.message or "No suitable service found for this request",
            "query": self.query,
            "routing": routing,
            "availableServices": [s.to_wire() for s in self.available_services],
        }

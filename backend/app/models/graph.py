"""
Knowledge graph models.

A KnowledgeGraph is an immutable snapshot built from the registry; every
rebuild produces a new instance with a higher metadata.version.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import Field

from app.models.service import CamelModel, ServiceRecord


class GraphMetadata(CamelModel):
    total_services: int
    active_services: int
    version: int
    last_updated: datetime


class GraphNode(CamelModel):
    id: str
    label: str
    type: str = "microservice"
    data: ServiceRecord


class GraphEdge(CamelModel):
    """Directed edge between two service ids."""

    from_: str = Field(..., alias="from")
    to: str
    type: str
    label: str
    weight: int


class Relationship(CamelModel):
    """Directed, descriptive relationship between two service names."""

    from_: str = Field(..., alias="from")
    to: str
    type: str
    reason: List[str]
    weight: int


class SchemaGroup(CamelModel):
    services: List[str] = Field(default_factory=list)
    tables: List[str] = Field(default_factory=list)


class KnowledgeGraph(CamelModel):
    metadata: GraphMetadata
    nodes: List[GraphNode] = Field(default_factory=list)
    edges: List[GraphEdge] = Field(default_factory=list)
    relationships: List[Relationship] = Field(default_factory=list)
    schemas: Dict[str, SchemaGroup] = Field(default_factory=dict)

    @property
    def version(self) -> int:
        return self.metadata.version

    def node_by_name(self, service_name: str) -> Optional[GraphNode]:
        for node in self.nodes:
            if node.data.service_name == service_name:
                return node
        return None


class RelatedService(CamelModel):
    """A service connected to another one, annotated with the relationship."""

    service: ServiceRecord
    relationship_type: str
    relationship_reason: List[str]
    weight: int

    def to_wire(self) -> Dict[str, Any]:
        payload = self.service.to_wire()
        payload.update({
            "relationshipType": self.relationship_type,
            "relationshipReason": self.relationship_reason,
            "weight": self.weight,
        })
        return payload

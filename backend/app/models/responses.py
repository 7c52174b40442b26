"""
Response models for API endpoints.

These models define the structure of API responses; they serialize with
camelCase keys.
"""
from typing import List, Optional

from app.models.graph import KnowledgeGraph
from app.models.service import CamelModel, ServiceSummary


class RegistrationResponse(CamelModel):
    success: bool = True
    message: str = "Service registered successfully"
    service_id: str


class ServiceListResponse(CamelModel):
    success: bool = True
    services: List[ServiceSummary]
    total: int


class KnowledgeGraphResponse(CamelModel):
    success: bool = True
    knowledge_graph: KnowledgeGraph


class GraphRebuildSummary(CamelModel):
    version: int
    total_services: int
    relationships: int


class GraphRebuildResponse(CamelModel):
    success: bool = True
    message: str = "Knowledge graph rebuilt successfully"
    graph: GraphRebuildSummary


class HealthResponse(CamelModel):
    status: str = "healthy"
    uptime: int
    registered_services: int


class UIUXUpdateResponse(CamelModel):
    success: bool = True
    message: str = "UI/UX configuration updated successfully"
    version: int
    last_updated: Optional[str] = None

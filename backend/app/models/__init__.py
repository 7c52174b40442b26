"""Pydantic models for service records, knowledge graphs, routing and API responses."""

from .service import MigrationDescriptor, ServiceRecord, ServiceStatus, ServiceSummary
from .graph import KnowledgeGraph, RelatedService
from .routing import OracleDecision, ResolvedService, RoutingDecision

__all__ = [
    "MigrationDescriptor",
    "ServiceRecord",
    "ServiceStatus",
    "ServiceSummary",
    "KnowledgeGraph",
    "RelatedService",
    "OracleDecision",
    "ResolvedService",
    "RoutingDecision",
]

"""Routing: oracle client and the router that falls back when it fails."""

from .oracle import OracleClient
from .router import RoutingService, build_query_from_request, infer_service_purpose

__all__ = ["OracleClient", "RoutingService", "build_query_from_request", "infer_service_purpose"]

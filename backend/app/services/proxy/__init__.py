"""Proxying of requests to registered services."""

from .forwarder import InboundRequest, OutboundResponse, ProxyForwarder, relay_headers

__all__ = ["InboundRequest", "OutboundResponse", "ProxyForwarder", "relay_headers"]

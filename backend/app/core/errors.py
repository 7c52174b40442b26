"""
Coordinator error taxonomy.

Each error carries the HTTP status the API layer maps it to. OracleError is
the exception: it never reaches a client because the router always follows
it with fallback routing.
"""
from typing import Any, Dict, List, Optional


class CoordinatorError(Exception):
    """Base class for coordinator errors."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CoordinatorError):
    """Registration (or config) input failed validation."""

    status_code = 400

    def __init__(self, errors: List[str], message: str = "Validation failed"):
        super().__init__(message)
        self.errors = list(errors)


class StorageError(CoordinatorError):
    """Persistence backend unavailable or rejected an operation."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


class GraphRebuildError(CoordinatorError):
    """Knowledge graph could not be regenerated."""


class OracleError(CoordinatorError):
    """Routing oracle unavailable or returned an unusable answer."""

    def __init__(self, message: str, reason: str = "unexpected_error", raw_output: Optional[str] = None):
        super().__init__(message)
        self.reason = reason
        self.raw_output = raw_output


class NoMatchError(CoordinatorError):
    """No registered service can handle the request."""

    status_code = 404

    def __init__(
        self,
        message: str,
        available_services: Optional[List[Dict[str, Any]]] = None,
        query: Optional[str] = None,
    ):
        super().__init__(message)
        self.available_services = available_services or []
        self.query = query


class ForwardError(CoordinatorError):
    """Forwarding to the target service failed."""

    status_code = 502

    def __init__(self, message: str, target_url: Optional[str] = None, service_name: Optional[str] = None):
        super().__init__(message)
        self.target_url = target_url
        self.service_name = service_name


class ForwardTimeoutError(ForwardError):
    """Target service did not answer within the proxy timeout."""


class ForwardTransportError(ForwardError):
    """Connection-level failure while talking to the target service."""

"""
Structured logging for the coordinator.

Entries are rendered as JSON (or with the console renderer in development)
and every entry carries the coordinator's name plus, while a request is
being handled, its trace_id and request_id. The trace_id is the correlation
ID the coordinator also hands to the services it proxies to.
"""
import logging
import sys
import uuid
from contextvars import ContextVar, Token
from typing import Any, Dict, Optional, Tuple

import structlog
from structlog.types import Processor

trace_id_var: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

SERVICE_NAME = "coordinator"

# Every forwarded request and oracle call would otherwise log a line of its own
QUIET_LOGGERS = ("httpx", "httpcore", "hpack")

RequestContextTokens = Tuple[Token, Token]


def add_trace_context(
    logger: Any,
    method_name: str,
    event_dict: Dict[str, Any],
) -> Dict[str, Any]:
    """structlog processor stamping service name and request correlation IDs."""
    trace_id = trace_id_var.get()
    if trace_id:
        event_dict["trace_id"] = trace_id

    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    event_dict["service"] = SERVICE_NAME
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        service_name: Value of the `service` field (defaults to SERVICE_NAME)
        json_output: JSON lines when True, console rendering otherwise
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    level = getattr(logging, log_level.upper(), logging.INFO)

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_trace_context,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(),
    ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    return structlog.get_logger(name)


def new_correlation_id() -> str:
    """A fresh trace or request ID (UUID4 string)."""
    return str(uuid.uuid4())


def bind_request_context(trace_id: Optional[str], request_id: Optional[str]) -> RequestContextTokens:
    """
    Set the correlation IDs for the request being handled.

    Returns:
        Tokens to pass to reset_request_context when the request is done
    """
    return trace_id_var.set(trace_id), request_id_var.set(request_id)


def reset_request_context(tokens: RequestContextTokens) -> None:
    trace_token, request_token = tokens
    trace_id_var.reset(trace_token)
    request_id_var.reset(request_token)


def get_trace_id() -> Optional[str]:
    return trace_id_var.get()


def get_request_id() -> Optional[str]:
    return request_id_var.get()

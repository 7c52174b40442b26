"""
Unit tests for structured logging configuration.

Tests verify:
- Logging configuration works for JSON and console output
- Context variables (trace_id, request_id) are set and retrieved
- Log entries carry the service name and trace context
- Correlation ID generation works
"""
import json
import logging
from io import StringIO

import pytest

from app.core import logging as coordinator_logging
from app.core.logging import (
    QUIET_LOGGERS,
    add_trace_context,
    bind_request_context,
    configure_logging,
    get_logger,
    get_request_id,
    get_trace_id,
    new_correlation_id,
    reset_request_context,
)


@pytest.fixture
def captured_output():
    """Route root logger output into a buffer for the duration of a test."""
    output = StringIO()
    root_logger = logging.getLogger()
    handler = logging.StreamHandler(output)
    handler.setLevel(logging.DEBUG)
    root_logger.addHandler(handler)
    previous_level = root_logger.level
    root_logger.setLevel(logging.INFO)
    yield output
    root_logger.removeHandler(handler)
    root_logger.setLevel(previous_level)


class TestLoggingConfiguration:
    """Test logging configuration and setup."""

    def test_configure_logging_json_output(self, captured_output):
        configure_logging(log_level="INFO", json_output=True)
        logger = get_logger("test_logging_json")

        logger.info("test_message", test_field="test_value")

        lines = [line for line in captured_output.getvalue().splitlines() if "test_message" in line]
        assert lines, "No log output captured"
        entry = json.loads(lines[-1])
        assert entry["event"] == "test_message"
        assert entry["test_field"] == "test_value"
        assert entry["level"] == "info"
        assert entry["service"] == coordinator_logging.SERVICE_NAME
        assert entry["timestamp"].endswith("Z")

    def test_configure_logging_console_output(self):
        configure_logging(log_level="INFO", json_output=False)
        logger = get_logger(__name__)

        # Should not raise an error
        logger.info("test_message", test_field="test_value")

    def test_service_name_override(self):
        original = coordinator_logging.SERVICE_NAME
        try:
            configure_logging(log_level="INFO", service_name="coordinator-test", json_output=True)
            assert coordinator_logging.SERVICE_NAME == "coordinator-test"
        finally:
            coordinator_logging.SERVICE_NAME = original

    def test_default_service_name(self):
        assert coordinator_logging.SERVICE_NAME == "coordinator"

    def test_http_client_loggers_quieted(self):
        configure_logging(log_level="DEBUG", json_output=False)

        for name in QUIET_LOGGERS:
            assert logging.getLogger(name).level == logging.WARNING


class TestContextVariables:
    """Test trace ID and request ID context variables."""

    def test_bind_and_reset_request_context(self):
        tokens = bind_request_context("test-trace-123", "test-request-456")
        assert get_trace_id() == "test-trace-123"
        assert get_request_id() == "test-request-456"

        reset_request_context(tokens)
        assert get_trace_id() is None
        assert get_request_id() is None

    def test_nested_bindings_restore_outer_values(self):
        outer = bind_request_context("outer-trace", "outer-request")
        inner = bind_request_context("inner-trace", "inner-request")
        assert get_trace_id() == "inner-trace"

        reset_request_context(inner)
        assert get_trace_id() == "outer-trace"
        assert get_request_id() == "outer-request"
        reset_request_context(outer)

    def test_new_correlation_id(self):
        correlation_id = new_correlation_id()

        assert isinstance(correlation_id, str)
        assert len(correlation_id) == 36
        assert correlation_id.count("-") == 4

    def test_correlation_ids_are_unique(self):
        assert new_correlation_id() != new_correlation_id()


class TestTraceContextProcessor:
    """Test the processor that stamps context onto every entry."""

    def test_adds_trace_context_and_service(self):
        tokens = bind_request_context("trace-abc", "request-def")
        try:
            event = add_trace_context(None, "info", {"event": "something_happened"})
        finally:
            reset_request_context(tokens)

        assert event["trace_id"] == "trace-abc"
        assert event["request_id"] == "request-def"
        assert event["service"] == coordinator_logging.SERVICE_NAME

    def test_omits_missing_context(self):
        event = add_trace_context(None, "info", {"event": "no_context"})

        assert "trace_id" not in event
        assert "request_id" not in event
        assert event["service"] == coordinator_logging.SERVICE_NAME


class TestLogLevels:
    """Test different log levels."""

    def test_debug_level(self):
        configure_logging(log_level="DEBUG", json_output=False)
        get_logger(__name__).debug("debug_message")

    def test_exception_logging(self):
        configure_logging(log_level="ERROR", json_output=False)
        logger = get_logger(__name__)

        try:
            raise ValueError("Test exception")
        except ValueError:
            logger.error("exception_occurred", exc_info=True)

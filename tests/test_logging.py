"""
Unit tests for structured logging configuration.

Tests verify:
- Logging configuration works for JSON and console output
- Context variables (request_id, caller_id) are set and retrieved
- The request context processor enriches events
"""
import json
import logging
from io import StringIO

from wizard_ai.core import logging as wizard_logging
from wizard_ai.core.logging import (
    add_request_context,
    configure_logging,
    generate_request_id,
    get_caller_id,
    get_logger,
    get_request_id,
    set_caller_id,
    set_request_id,
)


class TestLoggingConfiguration:
    """Test logging configuration and setup."""

    def test_configure_logging_json_output(self):
        """JSON output contains the event and its fields."""
        output = StringIO()
        configure_logging(log_level="INFO", json_output=True)

        root_logger = logging.getLogger()
        original_handlers = list(root_logger.handlers)
        root_logger.handlers.clear()
        handler = logging.StreamHandler(output)
        root_logger.addHandler(handler)
        root_logger.setLevel(logging.INFO)
        try:
            get_logger("test_json").info("test_message", test_field="test_value")
            handler.flush()
        finally:
            root_logger.removeHandler(handler)
            root_logger.handlers.extend(original_handlers)

        line = output.getvalue().strip().splitlines()[-1]
        event = json.loads(line)
        assert event["event"] == "test_message"
        assert event["test_field"] == "test_value"
        assert event["service"] == "wizard_ai"
        assert event["level"] == "info"

    def test_configure_logging_console_output(self):
        """Console renderer should not raise."""
        configure_logging(log_level="INFO", json_output=False)
        get_logger(__name__).info("test_message", test_field="test_value")
        configure_logging(log_level="INFO", json_output=True)

    def test_default_service_name(self):
        assert wizard_logging.SERVICE_NAME == "wizard_ai"


class TestContextVariables:
    """Test request ID and caller ID context variables."""

    def test_set_and_get_request_id(self):
        set_request_id("test-request-456")
        assert get_request_id() == "test-request-456"

        set_request_id(None)
        assert get_request_id() is None

    def test_set_and_get_caller_id(self):
        set_caller_id("user-789")
        assert get_caller_id() == "user-789"

        set_caller_id(None)
        assert get_caller_id() is None

    def test_generate_request_id(self):
        request_id = generate_request_id()

        assert isinstance(request_id, str)
        assert len(request_id) == 36
        assert request_id.count("-") == 4

    def test_add_request_context_processor(self):
        set_request_id("req-1")
        set_caller_id("caller-1")
        try:
            event = add_request_context(None, "info", {"event": "x"})
        finally:
            set_request_id(None)
            set_caller_id(None)

        assert event["request_id"] == "req-1"
        assert event["caller_id"] == "caller-1"
        assert event["service"] == "wizard_ai"
        assert "timestamp" in event

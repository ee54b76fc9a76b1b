"""
Unit tests for structured logging utility (src/utils/logger.py)

Tests covering:
- JSON log formatting with required fields (timestamp, level, message, operation, context)
- Email masking
- Operation timing and error context via the log_operation decorator
"""

import json
import logging
from datetime import datetime, timezone
from io import StringIO

import pytest

from src.utils.logger import (
    StructuredLogger,
    get_logger,
    log_operation,
    mask_email,
)


class TestMaskEmail:
    """Tests for email masking utility."""

    def test_mask_email_keeps_first_character_and_domain(self):
        result = mask_email("jane.doe@example.com")
        assert result == "j***@example.com"
        assert "jane.doe" not in result

    def test_mask_email_strips_whitespace(self):
        assert mask_email("  omar@gym.ae ") == "o***@gym.ae"

    @pytest.mark.parametrize("value", ["", None])
    def test_mask_email_missing_value(self, value):
        assert mask_email(value) == "unknown"

    @pytest.mark.parametrize("value", ["no-at-sign", "@example.com", "jane@"])
    def test_mask_email_malformed(self, value):
        assert mask_email(value) == "invalid"


class TestStructuredLogger:
    """Tests for StructuredLogger class."""

    @pytest.fixture
    def logger_with_handler(self):
        """Fixture providing logger with string stream handler."""
        logger = StructuredLogger("structured_logger_test")
        logger.logger.handlers.clear()

        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.logger.addHandler(handler)
        logger.logger.setLevel(logging.DEBUG)

        return logger, stream

    def test_format_log_basic_fields(self, logger_with_handler):
        logger, _ = logger_with_handler

        parsed = json.loads(logger._format_log("INFO", "Test message"))

        assert parsed["level"] == "INFO"
        assert parsed["message"] == "Test message"
        assert parsed["timestamp"].endswith("Z")
        datetime.fromisoformat(parsed["timestamp"].replace("Z", "+00:00"))

    def test_format_log_all_fields(self, logger_with_handler):
        """Test log formatting with all optional fields."""
        logger, _ = logger_with_handler

        context = {"session_id": "abc123", "member_id": "member-1"}
        parsed = json.loads(
            logger._format_log(
                "ERROR",
                "Something went wrong",
                operation="complete_session",
                context=context,
                duration_ms=45.678,
                error="Database error",
            )
        )

        assert parsed["operation"] == "complete_session"
        assert parsed["context"] == context
        assert parsed["duration_ms"] == 45.68
        assert parsed["error"] == "Database error"

    def test_format_log_serializes_datetimes_in_context(self, logger_with_handler):
        """Datetimes and other non-JSON values are stringified, not rejected."""
        logger, _ = logger_with_handler
        at = datetime(2026, 10, 19, 6, 0, tzinfo=timezone.utc)

        parsed = json.loads(logger._format_log("INFO", "x", context={"at": at}))

        assert parsed["context"]["at"] == str(at)

    def test_level_methods_write_json_lines(self, logger_with_handler):
        logger, stream = logger_with_handler

        logger.debug("debug message", operation="op")
        logger.info("info message", duration_ms=1.0)
        logger.warning("warning message", error="careful")
        logger.error("error message", error="boom")

        lines = [json.loads(line) for line in stream.getvalue().strip().splitlines()]
        assert [line["level"] for line in lines] == ["DEBUG", "INFO", "WARNING", "ERROR"]
        assert lines[2]["error"] == "careful"

    def test_get_logger_returns_structured_logger(self):
        logger = get_logger("src.engine.lifecycle")
        assert isinstance(logger, StructuredLogger)
        assert logger.logger.name == "src.engine.lifecycle"


class TestLogOperationDecorator:
    """Tests for log_operation decorator."""

    @pytest.fixture
    def captured(self):
        stream = StringIO()
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger(__name__).addHandler(handler)
        yield stream
        logging.getLogger(__name__).removeHandler(handler)

    def test_logs_start_and_completion_with_duration(self, captured):
        @log_operation("sample_operation")
        def work(session_id=None):
            return "done"

        assert work(session_id="s-1") == "done"

        lines = [json.loads(line) for line in captured.getvalue().strip().splitlines()]
        assert lines[0]["message"] == "Starting sample_operation"
        assert lines[-1]["message"] == "Completed sample_operation"
        assert lines[-1]["context"]["session_id"] == "s-1"
        assert "duration_ms" in lines[-1]

    def test_masks_email_keyword_argument(self, captured):
        @log_operation("notify")
        def notify(email=None):
            return True

        notify(email="jane@example.com")

        output = captured.getvalue()
        assert "jane@example.com" not in output
        assert "j***@example.com" in output

    def test_logs_and_reraises_failures(self, captured):
        @log_operation("failing_operation")
        def fail():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            fail()

        last = json.loads(captured.getvalue().strip().splitlines()[-1])
        assert last["level"] == "ERROR"
        assert last["error"] == "bad input"

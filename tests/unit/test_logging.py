"""Unit tests for QDG logging.

This module tests the logging setup, the JSON formatter, timing helpers
and structured event records.
"""

import json
import logging
import pytest

from qdg.qdg_logging import (
    JsonFormatter,
    log_duplicate_task,
    log_error_with_context,
    log_event,
    log_operation,
    log_performance,
    log_task_record_saved,
    log_workflow_stage,
    setup_logging,
)


def _events(caplog):
    return [r.extra_fields for r in caplog.records if r.name == "qdg.events"]


class TestJsonFormatter:
    """Test cases for JsonFormatter."""

    def test_json_formatter_basic(self):
        """Test basic JSON formatting."""
        formatter = JsonFormatter()
        record = logging.getLogger("test").makeRecord("test", logging.INFO, "fn", 1, "Test message", (), None)

        data = json.loads(formatter.format(record))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data

    def test_json_formatter_with_exception(self):
        """Test JSON formatting with exception info."""
        formatter = JsonFormatter()
        try:
            raise ValueError("Test exception")
        except ValueError as e:
            record = logging.getLogger("test").makeRecord(
                "test", logging.ERROR, "fn", 1, "Test message", (), (type(e), e, e.__traceback__)
            )

        data = json.loads(formatter.format(record))
        assert "ValueError: Test exception" in data["exception"]

    def test_json_formatter_extra_fields(self):
        """Test extra fields are merged into the entry."""
        formatter = JsonFormatter()
        record = logging.getLogger("test").makeRecord("test", logging.INFO, "fn", 1, "msg", (), None)
        record.extra_fields = {"task_id": "task_1_abc12345"}

        assert json.loads(formatter.format(record))["task_id"] == "task_1_abc12345"


class TestSetupLogging:
    """Test cases for setup_logging."""

    def test_console_and_file_handlers(self, tmp_path):
        """Test a JSON file handler is added when a log file is given."""
        log_file = tmp_path / "qdg.log"
        setup_logging("DEBUG", log_file)
        logger = logging.getLogger("qdg")

        try:
            assert len(logger.handlers) == 2
            assert isinstance(logger.handlers[1].formatter, JsonFormatter)
            logger.handlers[1].flush()
            first = log_file.read_text(encoding="utf-8").splitlines()[0]
            assert json.loads(first)["message"] == "QDG logging initialized"
        finally:
            for handler in list(logger.handlers):
                handler.close()
            logger.handlers.clear()


class TestLogPerformance:
    """Test cases for the log_performance decorator."""

    def test_success(self, caplog):
        """Test a successful call logs its duration."""
        @log_performance("unit_success_op")
        def operation():
            return 42

        with caplog.at_level(logging.DEBUG, logger="qdg.performance"):
            assert operation() == 42

        record = caplog.records[-1]
        assert record.extra_fields["status"] == "success"
        assert record.extra_fields["duration"] >= 0

    def test_failure_reraises(self, caplog):
        """Test failures are logged and re-raised."""
        @log_performance("unit_failure_op")
        def operation():
            raise RuntimeError("boom")

        with caplog.at_level(logging.ERROR, logger="qdg.performance"):
            with pytest.raises(RuntimeError):
                operation()

        assert caplog.records[-1].extra_fields["error_type"] == "RuntimeError"
        assert "unit_failure_op failed" in caplog.text


class TestLogOperation:
    """Test cases for the log_operation context manager."""

    def test_completed(self, caplog):
        """Test a completed block is logged."""
        with caplog.at_level(logging.INFO, logger="qdg.operations"):
            with log_operation("initialize", root="/tmp/p"):
                pass
        assert "Completed initialize" in caplog.text
        assert caplog.records[-1].extra_fields["root"] == "/tmp/p"

    def test_failed(self, caplog):
        """Test a failing block is logged and re-raised."""
        with caplog.at_level(logging.ERROR, logger="qdg.operations"):
            with pytest.raises(OSError):
                with log_operation("initialize"):
                    raise OSError("disk full")
        assert "initialize failed: disk full" in caplog.text


class TestEvents:
    """Test cases for structured event records."""

    def test_log_event(self, caplog):
        """Test the event payload is returned and logged."""
        with caplog.at_level(logging.INFO, logger="qdg.events"):
            event = log_event("task_record_saved", task_id="task_1_abc12345", size=10)

        assert event["event_type"] == "task_record_saved"
        assert _events(caplog) == [event]

    def test_domain_helpers(self, caplog):
        """Test the helpers emit their named events."""
        with caplog.at_level(logging.INFO, logger="qdg.events"):
            log_workflow_stage(2, task_id="task_1_abc12345", existing=False)
            log_task_record_saved("task_1_abc12345", "/p/.qdg/tasks/x.md", 120)
            log_duplicate_task("task_1_abc12345", "abc12345")

        events = _events(caplog)
        assert [e["event_type"] for e in events] == [
            "workflow_stage_2", "task_record_saved", "duplicate_task_found",
        ]
        assert events[0]["stage"] == 2
        assert events[1]["size"] == 120


class TestLogErrorWithContext:
    """Test cases for log_error_with_context."""

    def test_logs_operation(self, caplog):
        """Test the operation name appears in the message."""
        with caplog.at_level(logging.ERROR, logger="qdg.errors"):
            log_error_with_context(ValueError("bad"), {"operation": "save_dimensions"})
        assert "Error in save_dimensions: bad" in caplog.text
        assert caplog.records[-1].extra_fields["context"] == {"operation": "save_dimensions"}

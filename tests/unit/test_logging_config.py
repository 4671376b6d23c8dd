"""Unit tests for structured logging and the audit logger."""

import json
import logging
import sys

import pytest

from agentd.lib.logging_config import AuditLogger, StructuredFormatter, setup_logging


@pytest.fixture
def restore_logging():
    """Undo setup_logging side effects for later tests."""
    root = logging.getLogger()
    root_handlers = list(root.handlers)
    root_level = root.level
    yield
    for name in ("agentd", "agentd.audit", "opentelemetry"):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
    root.handlers = root_handlers
    root.setLevel(root_level)


def _record(msg: str = "hello", **extra) -> logging.LogRecord:
    record = logging.LogRecord("agentd.test", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredFormatter:
    """Test JSON log formatting."""

    def test_json_output_with_extras(self):
        formatter = StructuredFormatter(extra_fields={"service": "agentd"})

        entry = json.loads(formatter.format(_record(conversation_id="conv-1")))

        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["logger"] == "agentd.test"
        assert entry["conversation_id"] == "conv-1"
        assert entry["service"] == "agentd"

    def test_no_trace_ids_without_recording_span(self):
        entry = json.loads(StructuredFormatter().format(_record()))
        assert "trace_id" not in entry

    def test_exception_details(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("agentd", logging.ERROR, __file__, 1, "failed", None, sys.exc_info())

        entry = json.loads(StructuredFormatter().format(record))

        assert entry["exception"]["type"] == "ValueError"
        assert "boom" in entry["exception"]["traceback"]


class TestAuditLogger:
    """Test audit events."""

    def test_approval_event(self, caplog):
        audit = AuditLogger()

        with caplog.at_level(logging.INFO, logger="agentd.audit"):
            audit.log_approval_event("resolved", "conv-1", "call_1", "file_write", "approved", resolved_by="bob")

        record = caplog.records[-1]
        assert record.audit_type == "approval"
        assert record.decision == "approved"
        assert record.resolved_by == "bob"

    def test_failed_delivery_logs_warning(self, caplog):
        audit = AuditLogger()

        with caplog.at_level(logging.INFO, logger="agentd.audit"):
            audit.log_delivery_event("slack", "conv-1", "evt-1", "failed", reason="timeout")

        assert caplog.records[-1].levelno == logging.WARNING
        assert caplog.records[-1].reason == "timeout"


class TestSetupLogging:
    """Test dictConfig based setup."""

    def test_file_handlers(self, tmp_path, restore_logging):
        setup_logging({"level": "INFO", "directory": str(tmp_path / "logs")})

        logging.getLogger("agentd.audit").info("audit entry", extra={"audit_type": "session"})
        for handler in logging.getLogger("agentd.audit").handlers:
            handler.flush()

        lines = (tmp_path / "logs" / "audit.jsonl").read_text().strip().splitlines()
        assert json.loads(lines[-1])["audit_type"] == "session"
        assert (tmp_path / "logs" / "agentd.log").exists()

"""
Structured logging configuration with audit trail support for agentd.

Provides JSON-formatted logging with OpenTelemetry correlation and a
dedicated audit logger for session, approval, capability and delivery events.
"""

import json
import logging
import logging.config
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from opentelemetry import trace


_RESERVED_ATTRS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message",
    "taskName"
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter with OpenTelemetry trace correlation."""

    def __init__(self, include_trace: bool = True, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.include_trace = include_trace
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        # Add trace context if available
        if self.include_trace:
            current_span = trace.get_current_span()
            if current_span and current_span.is_recording():
                span_context = current_span.get_span_context()
                log_entry.update({
                    "trace_id": format(span_context.trace_id, "032x"),
                    "span_id": format(span_context.span_id, "016x")
                })

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        # Add extra fields from record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_entry[key] = value

        log_entry.update(self.extra_fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class AuditLogger:
    """Specialized logger for audit events."""

    def __init__(self, logger_name: str = "agentd.audit"):
        self.logger = logging.getLogger(logger_name)

    def log_session_event(
        self,
        event_type: str,
        conversation_id: str,
        action: Optional[str] = None,
        result: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a session lifecycle event."""
        self.logger.info(
            f"Session event: {event_type}",
            extra={
                "audit_type": "session",
                "event_type": event_type,
                "conversation_id": conversation_id,
                "action": action,
                "result": result,
                "metadata": metadata or {}
            }
        )

    def log_approval_event(
        self,
        event_type: str,
        conversation_id: str,
        call_id: str,
        capability: str,
        decision: str,
        resolved_by: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log an approval request or decision."""
        self.logger.info(
            f"Approval event: {event_type} - {capability} ({decision})",
            extra={
                "audit_type": "approval",
                "event_type": event_type,
                "conversation_id": conversation_id,
                "call_id": call_id,
                "capability": capability,
                "decision": decision,
                "resolved_by": resolved_by,
                "metadata": metadata or {}
            }
        )

    def log_capability_event(
        self,
        capability: str,
        call_id: str,
        result: str,
        elapsed_ms: Optional[float] = None,
        conversation_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a capability dispatch."""
        self.logger.info(
            f"Capability event: {capability} - {result}",
            extra={
                "audit_type": "capability",
                "capability": capability,
                "call_id": call_id,
                "result": result,
                "elapsed_ms": elapsed_ms,
                "conversation_id": conversation_id,
                "metadata": metadata or {}
            }
        )

    def log_delivery_event(
        self,
        channel: str,
        conversation_id: str,
        event_id: str,
        result: str,
        reason: Optional[str] = None
    ) -> None:
        """Log an outbound delivery outcome."""
        level = logging.INFO if result == "delivered" else logging.WARNING
        self.logger.log(
            level,
            f"Delivery event: {channel} - {result}",
            extra={
                "audit_type": "delivery",
                "channel": channel,
                "conversation_id": conversation_id,
                "event_id": event_id,
                "result": result,
                "reason": reason
            }
        )


def setup_logging(config: Dict[str, Any]) -> None:
    """Setup structured logging configuration.

    Args:
        config: Logging settings, usually ``LoggingConfig.model_dump()``
    """
    log_level = config.get("level", "INFO").upper()
    log_format = config.get("format", "structured")
    log_directory = config.get("directory")

    handlers: Dict[str, Dict[str, Any]] = {
        "console": {
            "class": "logging.StreamHandler",
            "level": log_level,
            "formatter": "structured" if log_format == "structured" else "simple",
            "stream": sys.stdout
        }
    }
    app_handlers = ["console"]
    audit_handlers = ["console"]

    if log_directory:
        log_dir = Path(log_directory).expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)

        handlers["application_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": log_level,
            "formatter": "structured",
            "filename": str(log_dir / "agentd.log"),
            "maxBytes": config.get("max_file_size", 10 * 1024 * 1024),  # 10MB
            "backupCount": config.get("backup_count", 5)
        }
        handlers["audit_file"] = {
            "class": "logging.handlers.RotatingFileHandler",
            "level": "INFO",
            "formatter": "structured",
            "filename": str(log_dir / "audit.jsonl"),
            "maxBytes": config.get("max_file_size", 10 * 1024 * 1024),
            "backupCount": config.get("backup_count", 5)
        }
        app_handlers = ["console", "application_file"]
        audit_handlers = ["audit_file"]

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
                "include_trace": config.get("include_trace", True),
                "extra_fields": {
                    "service": "agentd",
                    "environment": config.get("environment", "development")
                }
            },
            "simple": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": handlers,
        "loggers": {
            "agentd": {
                "level": log_level,
                "handlers": app_handlers,
                "propagate": False
            },
            "agentd.audit": {
                "level": "INFO",
                "handlers": audit_handlers,
                "propagate": False
            },
            "opentelemetry": {
                "level": "WARNING",
                "handlers": ["console"],
                "propagate": False
            }
        },
        "root": {
            "level": log_level,
            "handlers": ["console"]
        }
    }

    logging.config.dictConfig(logging_config)

    logger = logging.getLogger("agentd.logging")
    logger.info("Structured logging initialized", extra={
        "config": {
            "level": log_level,
            "format": log_format,
            "directory": log_directory
        }
    })


def get_audit_logger() -> AuditLogger:
    """Get the configured audit logger instance."""
    return AuditLogger()

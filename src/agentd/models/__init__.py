"""Data models for the agentd runtime."""

from agentd.models.approval import ApprovalOutcome, ApprovalRequest, ApprovalState
from agentd.models.audit_record import AuditRecord, EventType, ResultStatus
from agentd.models.capability import CapabilityKind, CapabilitySchema
from agentd.models.context import ContextBundle, ContextSnippet, SnippetSource
from agentd.models.event import Attachment, Event, EventDirection, EventKind
from agentd.models.policy import ApprovalPolicy
from agentd.models.session import Session, SessionStatus
from agentd.models.tool_call import RiskLevel, ToolCall, ToolResult, ToolResultStatus
from agentd.models.turn import MessageRole, Turn

__all__ = [
    "ApprovalOutcome",
    "ApprovalPolicy",
    "ApprovalRequest",
    "ApprovalState",
    "Attachment",
    "AuditRecord",
    "CapabilityKind",
    "CapabilitySchema",
    "ContextBundle",
    "ContextSnippet",
    "Event",
    "EventDirection",
    "EventKind",
    "EventType",
    "MessageRole",
    "ResultStatus",
    "RiskLevel",
    "Session",
    "SessionStatus",
    "SnippetSource",
    "ToolCall",
    "ToolResult",
    "ToolResultStatus",
    "Turn",
]

"""AuditRecord model for approval and dispatch decisions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class EventType(str, Enum):
    """Audit event type enumeration."""

    CLASSIFICATION = "classification"
    APPROVAL = "approval"
    DISPATCH = "dispatch"
    SECURITY = "security"


class ResultStatus(str, Enum):
    """Operation result status enumeration."""

    SUCCESS = "success"
    FAILURE = "failure"
    BLOCKED = "blocked"
    TIMEOUT = "timeout"
    PENDING = "pending"


class AuditRecord(BaseModel):
    """Audit trail entry for a policy or approval decision."""

    record_id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier for the audit record")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="When the event occurred")
    event_type: EventType = Field(..., description="Type of event")
    conversation_id: Optional[str] = Field(None, description="Related conversation")
    call_id: Optional[str] = Field(None, description="Related tool call")
    action: str = Field(..., description="Specific action or decision")
    result: ResultStatus = Field(..., description="Outcome of the action")
    reason: Optional[str] = Field(None, description="Rationale for the decision")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional event metadata")

    @field_validator("action")
    @classmethod
    def validate_action(cls, v):
        if not v.strip():
            raise ValueError("action cannot be empty")
        return v.strip()

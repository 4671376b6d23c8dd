"""ApprovalRequest model with terminal state handling."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from agentd.models.tool_call import ToolCall


class ApprovalState(str, Enum):
    """Lifecycle states of an approval request."""

    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


class ApprovalOutcome(str, Enum):
    """Terminal outcome handed back to the runtime."""

    APPROVED = "approved"
    DENIED = "denied"
    EXPIRED = "expired"


class ApprovalRequest(BaseModel):
    """
    Pending human decision tied to exactly one sensitive ToolCall.

    A request is created pending and moves once to approved, denied or
    expired. Terminal states are final.
    """

    request_id: str = Field(default_factory=lambda: str(uuid4()), description="Unique request identifier")
    call_id: str = Field(..., description="ToolCall this request guards")
    conversation_id: str = Field(..., description="Conversation the call belongs to")
    channel: Optional[str] = Field(None, description="Channel of the originating conversation")
    capability: str = Field(..., description="Capability name")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Arguments shown to the approver")
    reason: Optional[str] = Field(None, description="Why the call was classified sensitive")
    state: ApprovalState = Field(default=ApprovalState.PENDING, description="Current state")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime = Field(..., description="Deadline after which the request expires")
    resolved_at: Optional[datetime] = Field(None, description="When a terminal state was reached")
    resolved_by: Optional[str] = Field(None, description="Who or what resolved the request")

    @model_validator(mode="after")
    def validate_deadline(self):
        if self.expires_at < self.created_at:
            raise ValueError("expires_at cannot be before created_at")
        return self

    @classmethod
    def for_call(
        cls,
        call: ToolCall,
        conversation_id: str,
        timeout_seconds: float,
        channel: Optional[str] = None,
        reason: Optional[str] = None
    ) -> "ApprovalRequest":
        """Create a fresh pending request for a tool call."""
        now = datetime.now(timezone.utc)
        return cls(
            call_id=call.call_id,
            conversation_id=conversation_id,
            channel=channel,
            capability=call.name,
            arguments=dict(call.arguments),
            reason=reason,
            created_at=now,
            expires_at=now + timedelta(seconds=timeout_seconds)
        )

    @property
    def is_pending(self) -> bool:
        return self.state == ApprovalState.PENDING

    def seconds_remaining(self) -> float:
        """Time left before the request expires, never negative."""
        remaining = (self.expires_at - datetime.now(timezone.utc)).total_seconds()
        return max(0.0, remaining)

    def resolve(self, outcome: ApprovalOutcome, resolved_by: Optional[str] = None) -> bool:
        """Move the request to a terminal state.

        Returns:
            False if the request had already been resolved
        """
        if not self.is_pending:
            return False

        self.state = ApprovalState(outcome.value)
        self.resolved_at = datetime.now(timezone.utc)
        self.resolved_by = resolved_by
        return True

    def prompt_text(self) -> str:
        """Message shown to a human approver."""
        lines = [
            f"Approval needed to run '{self.capability}' (call {self.call_id}).",
            f"Arguments: {self.arguments}",
        ]
        if self.reason:
            lines.append(f"Reason: {self.reason}")
        lines.append(f"Reply '/approve {self.call_id}' or '/deny {self.call_id}'.")
        return "\n".join(lines)

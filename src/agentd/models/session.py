"""Session model with state transitions and validation."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agentd.models.approval import ApprovalRequest
from agentd.models.event import Event
from agentd.models.tool_call import ToolCall
from agentd.models.turn import MessageRole, Turn


class SessionStatus(str, Enum):
    """Valid session status values."""

    IDLE = "idle"
    RUNNING = "running"
    AWAITING_APPROVAL = "awaiting_approval"
    FAILED = "failed"


VALID_TRANSITIONS = {
    SessionStatus.IDLE: [SessionStatus.RUNNING],
    SessionStatus.RUNNING: [SessionStatus.IDLE, SessionStatus.AWAITING_APPROVAL, SessionStatus.FAILED],
    SessionStatus.AWAITING_APPROVAL: [SessionStatus.RUNNING, SessionStatus.FAILED],
    SessionStatus.FAILED: [SessionStatus.RUNNING, SessionStatus.IDLE],
}

# Statuses in which a loop is in flight
ACTIVE_STATUSES = {SessionStatus.RUNNING, SessionStatus.AWAITING_APPROVAL}


class Session(BaseModel):
    """Durable state of one conversation.

    Owned by the runtime while a loop is in flight, by the session store
    otherwise. History is append-only.
    """

    model_config = ConfigDict(validate_assignment=True)

    conversation_id: str = Field(..., min_length=1, description="Unique conversation identifier")
    channel: Optional[str] = Field(None, description="Channel the conversation lives on")
    status: SessionStatus = Field(default=SessionStatus.IDLE, description="Current session status")
    history: List[Turn] = Field(default_factory=list, description="Ordered turns")

    loop_iterations: int = Field(default=0, ge=0, description="Iterations used by the current turn")
    total_iterations: int = Field(default=0, ge=0, description="Iterations used over the session's life")
    consecutive_tool_failures: int = Field(default=0, ge=0)

    pending_tool_calls: List[ToolCall] = Field(default_factory=list, description="Calls not yet answered")
    pending_approval: Optional[ApprovalRequest] = Field(None, description="Outstanding approval, if any")
    current_event: Optional[Event] = Field(None, description="Inbound event the running loop answers")
    processed_event_ids: List[str] = Field(default_factory=list, description="Recently handled event ids")

    failure_reason: Optional[str] = Field(None)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_activity: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("conversation_id")
    @classmethod
    def validate_conversation_id(cls, v):
        if not v.strip():
            raise ValueError("conversation_id cannot be blank")
        return v

    @model_validator(mode="after")
    def validate_constraints(self):
        if self.last_activity < self.created_at:
            raise ValueError("last_activity cannot be before created_at")
        if self.loop_iterations > self.total_iterations:
            raise ValueError("loop_iterations cannot exceed total_iterations")
        return self

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    def touch(self) -> None:
        self.last_activity = datetime.now(timezone.utc)

    def transition_to(self, new_status: SessionStatus, reason: Optional[str] = None) -> bool:
        """Transition to a new status with validation.

        Returns:
            False if the transition is not allowed from the current status
        """
        if new_status not in VALID_TRANSITIONS.get(self.status, []):
            return False

        old_status = self.status
        self.status = new_status
        self.touch()

        if new_status == SessionStatus.FAILED:
            self.failure_reason = reason
        elif old_status == SessionStatus.FAILED:
            self.failure_reason = None

        if reason:
            transitions = self.metadata.setdefault("status_transitions", [])
            transitions.append({
                "from": old_status.value,
                "to": new_status.value,
                "reason": reason,
                "timestamp": self.last_activity.isoformat()
            })
            # Keep the audit trail bounded
            del transitions[:-50]

        return True

    def begin_iteration(self) -> int:
        """Count a loop iteration and return the new per-turn count."""
        # total first: assignment validation checks loop <= total
        self.total_iterations += 1
        self.loop_iterations += 1
        return self.loop_iterations

    def start_turn(self, event: Event, window: int) -> Turn:
        """Record an inbound event as a user turn and reset per-turn counters."""
        turn = Turn(
            role=MessageRole.USER,
            content=event.text,
            sender=event.sender,
            event_id=event.event_id,
            metadata={"attachments": [a.model_dump() for a in event.attachments]} if event.attachments else {}
        )
        self.loop_iterations = 0
        self.consecutive_tool_failures = 0
        self.current_event = event
        self.channel = event.channel
        self.append_turn(turn)
        self.mark_processed(event.event_id, window)
        return turn

    def append_turn(self, turn: Turn) -> None:
        self.history.append(turn)
        self.touch()

    def has_processed(self, event_id: str) -> bool:
        return event_id in self.processed_event_ids

    def mark_processed(self, event_id: str, window: int) -> None:
        """Remember an event id, keeping only the most recent ``window`` ids."""
        if event_id in self.processed_event_ids:
            return
        self.processed_event_ids.append(event_id)
        if len(self.processed_event_ids) > window:
            self.processed_event_ids = self.processed_event_ids[-window:]

    def latest_user_text(self) -> str:
        for turn in reversed(self.history):
            if turn.role == MessageRole.USER:
                return turn.content
        return ""

    def history_window(self, limit: int) -> List[Turn]:
        """Most recent turns, never starting in the middle of a tool exchange."""
        if limit <= 0:
            raise ValueError("Limit must be positive")

        start = max(0, len(self.history) - limit)
        while start > 0 and self.history[start].role == MessageRole.TOOL:
            start -= 1
        return self.history[start:]

    def snapshot(self) -> "Session":
        """Deep copy safe to hand to concurrent readers."""
        return self.model_copy(deep=True)

    def get_summary(self) -> Dict[str, Any]:
        """Status summary for dashboards and the approval console."""
        return {
            "conversation_id": self.conversation_id,
            "channel": self.channel,
            "status": self.status.value,
            "turns": len(self.history),
            "loop_iterations": self.loop_iterations,
            "total_iterations": self.total_iterations,
            "pending_tool_calls": [call.call_id for call in self.pending_tool_calls],
            "pending_approval": self.pending_approval.call_id if self.pending_approval else None,
            "failure_reason": self.failure_reason,
            "created_at": self.created_at.isoformat(),
            "last_activity": self.last_activity.isoformat()
        }

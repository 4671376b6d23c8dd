"""Event model for inbound and outbound channel traffic."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventDirection(str, Enum):
    """Which way an event travels relative to the runtime."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


class EventKind(str, Enum):
    """What an event carries."""

    MESSAGE = "message"
    RESPONSE = "response"
    ERROR = "error"
    NOTICE = "notice"
    APPROVAL_PROMPT = "approval_prompt"


class Attachment(BaseModel):
    """Structured attachment carried alongside event text."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="File name or label")
    mime_type: Optional[str] = Field(None, description="MIME type of the attachment")
    uri: Optional[str] = Field(None, description="Where the channel adapter stored the content")
    size: Optional[int] = Field(None, ge=0, description="Size in bytes")


class Event(BaseModel):
    """
    A unit of communication entering or leaving the runtime.

    Inbound events are produced by channel adapters, outbound events are
    consumed by them. Events are immutable once created.
    """

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid4()), description="Unique event identifier")
    channel: str = Field(..., min_length=1, description="Channel the event belongs to")
    conversation_id: str = Field(..., min_length=1, description="Conversation within the channel")
    sender: str = Field(..., min_length=1, description="Sender identity")
    text: str = Field(default="", description="Text payload")
    attachments: List[Attachment] = Field(default_factory=list, description="Structured attachments")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the event was created"
    )
    correlation_id: Optional[str] = Field(None, description="Event this one answers or relates to")
    direction: EventDirection = Field(default=EventDirection.INBOUND, description="Inbound or outbound")
    kind: EventKind = Field(default=EventKind.MESSAGE, description="Payload kind")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Adapter or runtime metadata")

    @field_validator("channel", "conversation_id", "sender")
    @classmethod
    def validate_identifiers(cls, v):
        """Identifiers cannot be blank."""
        if not v.strip():
            raise ValueError("identifier cannot be blank")
        return v.strip()

    @property
    def is_inbound(self) -> bool:
        return self.direction == EventDirection.INBOUND

    def reply(
        self,
        text: str,
        kind: EventKind = EventKind.RESPONSE,
        sender: str = "agent",
        metadata: Optional[Dict[str, Any]] = None
    ) -> "Event":
        """Build an outbound event addressed to this event's conversation.

        Args:
            text: Reply text
            kind: Outbound payload kind
            sender: Identity the reply is sent as
            metadata: Optional extra metadata

        Returns:
            Outbound Event correlated with this event
        """
        return Event(
            channel=self.channel,
            conversation_id=self.conversation_id,
            sender=sender,
            text=text,
            correlation_id=self.event_id,
            direction=EventDirection.OUTBOUND,
            kind=kind,
            metadata=metadata or {}
        )

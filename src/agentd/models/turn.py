"""Turn model for session history."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator

from agentd.models.tool_call import ToolCall, ToolResult


class MessageRole(str, Enum):
    """Message role enumeration."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"
    SYSTEM = "system"


class Turn(BaseModel):
    """
    One entry in a session's history.

    User turns carry the inbound event id, assistant turns may carry the tool
    calls the provider requested, tool turns carry the id of the call they
    answer.
    """

    turn_id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier for this turn")
    role: MessageRole = Field(..., description="Message role")
    content: str = Field(default="", description="Message text")
    sender: Optional[str] = Field(None, description="Sender identity for user turns")
    event_id: Optional[str] = Field(None, description="Inbound event that produced this turn")
    tool_calls: List[ToolCall] = Field(default_factory=list, description="Calls requested by the provider")
    tool_call_id: Optional[str] = Field(None, description="Call answered by a tool turn")
    name: Optional[str] = Field(None, description="Capability name for tool turns")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Turn-specific metadata")

    @model_validator(mode="after")
    def validate_role_fields(self):
        """Tool turns must reference a call; only assistant turns request calls."""
        if self.role == MessageRole.TOOL and not self.tool_call_id:
            raise ValueError("tool turns require tool_call_id")
        if self.tool_calls and self.role != MessageRole.ASSISTANT:
            raise ValueError("only assistant turns may carry tool calls")
        return self

    @classmethod
    def from_result(cls, result: ToolResult) -> "Turn":
        """Tool turn recording a ToolResult."""
        return cls(
            role=MessageRole.TOOL,
            content=result.to_content(),
            tool_call_id=result.call_id,
            name=result.name,
            metadata={
                "status": result.status.value,
                "elapsed_ms": result.elapsed_ms
            }
        )

    def to_chat_format(self) -> Dict[str, Any]:
        """Convert to the chat message layout providers expect."""
        message: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            message["tool_calls"] = [
                {"id": call.call_id, "name": call.name, "arguments": call.arguments}
                for call in self.tool_calls
            ]
        if self.role == MessageRole.TOOL:
            message["tool_call_id"] = self.tool_call_id
            message["name"] = self.name
        return message

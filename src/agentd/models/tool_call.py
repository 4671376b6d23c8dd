"""ToolCall and ToolResult models."""

import json
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field, field_validator


class RiskLevel(str, Enum):
    """Risk classification of a tool call."""

    SAFE = "safe"
    SENSITIVE = "sensitive"


class ToolResultStatus(str, Enum):
    """Outcome of a capability invocation."""

    SUCCESS = "success"
    ERROR = "error"
    NOT_FOUND = "not_found"
    TIMEOUT = "timeout"
    DENIED = "denied"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Statuses counted towards the consecutive tool failure limit
FAILURE_STATUSES = {ToolResultStatus.ERROR, ToolResultStatus.NOT_FOUND, ToolResultStatus.TIMEOUT}


class ToolCall(BaseModel):
    """A provider's request to invoke a named capability."""

    call_id: str = Field(default_factory=lambda: f"call_{uuid4().hex[:12]}", description="Unique per turn")
    name: str = Field(..., min_length=1, description="Capability name")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="JSON-like argument payload")
    risk: RiskLevel = Field(default=RiskLevel.SAFE, description="Risk classification")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v):
        if not v.strip():
            raise ValueError("capability name cannot be blank")
        return v.strip()

    def describe(self) -> str:
        """Short human readable form used in prompts and logs."""
        args = json.dumps(self.arguments, sort_keys=True, default=str)
        return f"{self.name}({args})"


class ToolResult(BaseModel):
    """Outcome of a dispatched (or refused) tool call."""

    call_id: str = Field(..., description="ToolCall this result answers")
    name: str = Field(..., description="Capability name")
    status: ToolResultStatus = Field(..., description="Outcome")
    output: Optional[str] = Field(None, description="Serialized success payload")
    error: Optional[str] = Field(None, description="Failure reason")
    elapsed_ms: float = Field(default=0.0, ge=0.0, description="Execution time")

    @property
    def is_failure(self) -> bool:
        return self.status in FAILURE_STATUSES

    @classmethod
    def refused(cls, call: ToolCall, status: ToolResultStatus, reason: str) -> "ToolResult":
        """Result for a call that was never executed."""
        return cls(call_id=call.call_id, name=call.name, status=status, error=reason)

    def to_content(self) -> str:
        """Render the result as the tool message the provider will read."""
        if self.status == ToolResultStatus.SUCCESS:
            return self.output or ""
        return f"[{self.status.value}] {self.error or 'no details'}"

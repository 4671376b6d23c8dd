"""Capability schema offered to the provider."""

from enum import Enum
from typing import Any, Dict

from pydantic import BaseModel, Field


class CapabilityKind(str, Enum):
    """The three kinds of invocable capability."""

    TOOL = "tool"
    SKILL = "skill"
    INTEGRATION = "integration"


class CapabilitySchema(BaseModel):
    """Name, description and JSON schema of one enabled capability."""

    name: str = Field(..., min_length=1)
    kind: CapabilityKind = Field(default=CapabilityKind.TOOL)
    description: str = Field(default="")
    parameters: Dict[str, Any] = Field(
        default_factory=lambda: {"type": "object", "properties": {}},
        description="JSON schema of the arguments"
    )

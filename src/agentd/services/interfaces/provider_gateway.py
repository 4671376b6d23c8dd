"""Abstract interface for language model providers.

Defines the ProviderGateway interface and the ProviderResponse it returns.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from agentd.models.capability import CapabilitySchema
from agentd.models.context import ContextBundle
from agentd.models.tool_call import ToolCall


class ProviderResponse(BaseModel):
    """Either a final answer or a list of tool calls requested by the provider."""

    final: Optional[str] = Field(None, description="Final answer text")
    tool_calls: List[ToolCall] = Field(default_factory=list, description="Requested capability invocations")
    text: str = Field(default="", description="Text accompanying tool calls, if any")
    usage: Dict[str, Any] = Field(default_factory=dict, description="Token accounting reported by the provider")

    @model_validator(mode="after")
    def validate_shape(self):
        if self.final is None and not self.tool_calls:
            raise ValueError("provider response must carry a final answer or tool calls")
        if self.final is not None and self.tool_calls:
            raise ValueError("provider response cannot carry both a final answer and tool calls")
        return self

    @property
    def is_final(self) -> bool:
        return self.final is not None

    @classmethod
    def answer(cls, text: str, **kwargs) -> "ProviderResponse":
        return cls(final=text, **kwargs)

    @classmethod
    def calls(cls, *tool_calls: ToolCall, text: str = "", **kwargs) -> "ProviderResponse":
        return cls(tool_calls=list(tool_calls), text=text, **kwargs)


class ProviderGateway(ABC):
    """Interface for model completion."""

    @abstractmethod
    async def complete(
        self,
        context: ContextBundle,
        capabilities: List[CapabilitySchema]
    ) -> ProviderResponse:
        """Produce the next step of the conversation.

        Args:
            context: History window and retrieved snippets
            capabilities: Schemas of the capabilities the provider may call

        Returns:
            ProviderResponse with a final answer or tool calls

        Raises:
            ProviderTimeout, ProviderRateLimited, ProviderMalformed
        """
        pass

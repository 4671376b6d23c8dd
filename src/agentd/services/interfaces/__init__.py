"""Interfaces of the collaborators the runtime talks to."""

from agentd.services.interfaces.approval_surface import ApprovalSurface
from agentd.services.interfaces.channel_adapter import ChannelAdapter
from agentd.services.interfaces.context_provider import (
    CompositeContextProvider,
    ContextProvider,
    NullContextProvider,
)
from agentd.services.interfaces.provider_gateway import ProviderGateway, ProviderResponse

__all__ = [
    "ApprovalSurface",
    "ChannelAdapter",
    "CompositeContextProvider",
    "ContextProvider",
    "NullContextProvider",
    "ProviderGateway",
    "ProviderResponse",
]

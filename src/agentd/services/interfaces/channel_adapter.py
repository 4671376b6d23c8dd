"""Abstract interface for channel adapters.

Adapters own the wire protocol of one messaging channel and exchange
normalized Events with the runtime.
"""

from abc import ABC, abstractmethod

from agentd.models.event import Event


class ChannelAdapter(ABC):
    """Interface for a bidirectional messaging channel."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Channel name carried by every Event of this adapter."""
        pass

    @abstractmethod
    async def receive(self) -> Event:
        """Wait for the next inbound event."""
        pass

    @abstractmethod
    async def send(self, event: Event) -> None:
        """Deliver an outbound event.

        Raises:
            DeliveryError: If the channel rejected or could not take the event
        """
        pass

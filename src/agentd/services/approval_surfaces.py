"""Approval surfaces: where approvers learn about pending requests."""

import logging
from typing import Optional, Sequence

from agentd.models.approval import ApprovalRequest
from agentd.models.event import Event, EventDirection, EventKind
from agentd.services.interfaces.approval_surface import ApprovalSurface
from agentd.services.interfaces.channel_adapter import ChannelAdapter


logger = logging.getLogger(__name__)


class LoggingApprovalSurface(ApprovalSurface):
    """Writes pending requests to the log, for operators using the approval console."""

    def __init__(self, logger_name: str = "agentd.approvals"):
        self.logger = logging.getLogger(logger_name)

    async def notify(self, request: ApprovalRequest) -> None:
        self.logger.warning(
            f"Approval pending for {request.capability} ({request.call_id}) "
            f"in {request.conversation_id}, expires {request.expires_at.isoformat()}",
            extra={
                "call_id": request.call_id,
                "conversation_id": request.conversation_id,
                "capability": request.capability,
                "arguments": request.arguments
            }
        )


class ChannelApprovalSurface(ApprovalSurface):
    """Posts approval prompts into a dedicated approvers conversation.

    Delivery errors propagate, so a prompt nobody can see denies the request.
    """

    def __init__(self, adapter: ChannelAdapter, conversation_id: str, sender: str = "agentd"):
        self.adapter = adapter
        self.conversation_id = conversation_id
        self.sender = sender

    async def notify(self, request: ApprovalRequest) -> None:
        event = Event(
            channel=self.adapter.name,
            conversation_id=self.conversation_id,
            sender=self.sender,
            text=f"[{request.channel or 'unknown'}:{request.conversation_id}] {request.prompt_text()}",
            direction=EventDirection.OUTBOUND,
            kind=EventKind.APPROVAL_PROMPT,
            metadata={"call_id": request.call_id, "conversation_id": request.conversation_id}
        )
        await self.adapter.send(event)


class FanOutApprovalSurface(ApprovalSurface):
    """Notifies several surfaces; succeeds if at least one of them did."""

    def __init__(self, surfaces: Sequence[ApprovalSurface]):
        self.surfaces = list(surfaces)

    async def notify(self, request: ApprovalRequest) -> None:
        last_error: Optional[Exception] = None
        delivered = 0

        for surface in self.surfaces:
            try:
                await surface.notify(request)
                delivered += 1
            except Exception as e:
                last_error = e
                logger.warning(f"{type(surface).__name__} failed to show {request.call_id}: {e}")

        if delivered == 0 and last_error is not None:
            raise last_error

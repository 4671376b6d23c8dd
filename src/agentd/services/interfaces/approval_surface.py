"""Abstract interface for surfaces that show approval requests to humans."""

from abc import ABC, abstractmethod

from agentd.models.approval import ApprovalRequest


class ApprovalSurface(ABC):
    """Interface for presenting pending approvals."""

    @abstractmethod
    async def notify(self, request: ApprovalRequest) -> None:
        """Present a pending request to an approver.

        Raising from this method denies the request.
        """
        pass

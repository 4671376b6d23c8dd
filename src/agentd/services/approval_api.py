"""Approval console HTTP API.

Lets an operator list and resolve pending approvals and inspect session
status. The app shares the runtime's event loop; the hosting process serves
it with any ASGI server.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, field_validator

from agentd import __version__
from agentd.models.approval import ApprovalOutcome, ApprovalRequest
from agentd.models.session import SessionStatus
from agentd.services.approval_gate import ApprovalGate
from agentd.services.runtime import AgentRuntime
from agentd.services.session_store import SessionStore


logger = logging.getLogger(__name__)


class ApprovalDecisionRequest(BaseModel):
    """Request schema for resolving an approval."""

    outcome: ApprovalOutcome = Field(..., description="approved or denied")
    resolved_by: str = Field(default="console", min_length=1, max_length=200, description="Approver identity")

    @field_validator("outcome")
    @classmethod
    def validate_outcome(cls, v):
        if v == ApprovalOutcome.EXPIRED:
            raise ValueError("outcome must be 'approved' or 'denied'")
        return v


class ApprovalDecisionResponse(BaseModel):
    """Response schema for a resolved approval."""

    call_id: str = Field(..., description="Resolved tool call")
    capability: str = Field(..., description="Capability the call invokes")
    conversation_id: str = Field(..., description="Conversation the call belongs to")
    outcome: ApprovalOutcome = Field(..., description="Recorded decision")
    resolved_by: str = Field(..., description="Approver identity")


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = __version__
    pending_approvals: int = 0
    sessions: Dict[str, Any] = Field(default_factory=dict)


def create_approval_app(
    gate: ApprovalGate,
    store: SessionStore,
    runtime: Optional[AgentRuntime] = None,
    history_limit: int = 20
) -> FastAPI:
    """Create the approval console application.

    Args:
        gate: Approval gate whose pending requests are exposed
        store: Session store for the status dashboard
        runtime: Runtime used for live status, optional
        history_limit: Number of recent turns returned per session

    Returns:
        FastAPI application
    """
    app = FastAPI(title="agentd approval console", version=__version__)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(
            pending_approvals=len(gate.list_pending()),
            sessions=store.get_statistics()
        )

    @app.get("/approvals", response_model=List[ApprovalRequest])
    async def list_approvals(conversation_id: Optional[str] = None) -> List[ApprovalRequest]:
        return gate.list_pending(conversation_id)

    @app.post("/approvals/{call_id}", response_model=ApprovalDecisionResponse)
    async def resolve_approval(call_id: str, decision: ApprovalDecisionRequest) -> ApprovalDecisionResponse:
        request = gate.get_pending(call_id)
        if request is None:
            raise HTTPException(status_code=404, detail=f"No pending approval for call {call_id}")

        if not gate.resolve(call_id, decision.outcome, resolved_by=decision.resolved_by):
            raise HTTPException(status_code=409, detail=f"Approval for call {call_id} was already resolved")

        logger.info(f"Console resolved {call_id} as {decision.outcome.value}")
        return ApprovalDecisionResponse(
            call_id=call_id,
            capability=request.capability,
            conversation_id=request.conversation_id,
            outcome=decision.outcome,
            resolved_by=decision.resolved_by
        )

    @app.get("/sessions")
    async def list_sessions(status: Optional[SessionStatus] = None) -> List[Dict[str, Any]]:
        if status is None:
            return [session.get_summary() for session in await store.list_active()]
        return await store.list_sessions(status=status)

    @app.get("/sessions/{conversation_id:path}")
    async def get_session(conversation_id: str) -> Dict[str, Any]:
        session = await store.get(conversation_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Session {conversation_id} not found")

        summary = runtime.get_session_status(conversation_id) if runtime else None
        if summary is None:
            summary = session.get_summary()

        summary["history"] = [turn.to_chat_format() for turn in session.history[-history_limit:]]
        summary["pending_approvals"] = [
            request.model_dump(mode="json") for request in gate.list_pending(conversation_id)
        ]
        return summary

    return app

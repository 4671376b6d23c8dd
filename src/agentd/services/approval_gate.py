"""Approval gate for sensitive tool calls."""

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

from agentd.lib.errors import ApprovalTimeout
from agentd.lib.logging_config import AuditLogger, get_audit_logger
from agentd.lib.observability import RuntimeMetrics, create_approval_span, get_runtime_metrics
from agentd.models.approval import ApprovalOutcome, ApprovalRequest, ApprovalState
from agentd.models.audit_record import AuditRecord, EventType, ResultStatus
from agentd.models.policy import ApprovalPolicy
from agentd.models.session import Session
from agentd.models.tool_call import RiskLevel, ToolCall
from agentd.services.interfaces.approval_surface import ApprovalSurface


logger = logging.getLogger(__name__)

_OUTCOME_RESULTS = {
    ApprovalOutcome.APPROVED: ResultStatus.SUCCESS,
    ApprovalOutcome.DENIED: ResultStatus.BLOCKED,
    ApprovalOutcome.EXPIRED: ResultStatus.TIMEOUT,
}


class ApprovalGate:
    """Classifies tool calls and holds sensitive ones until a human decides.

    Every sensitive call gets its own ApprovalRequest; decisions are never
    cached across call ids. Waiting always ends: a request nobody resolves
    expires at its deadline.
    """

    def __init__(
        self,
        policy: Optional[ApprovalPolicy] = None,
        surface: Optional[ApprovalSurface] = None,
        timeout_seconds: float = 300.0,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[RuntimeMetrics] = None
    ):
        """Initialize approval gate.

        Args:
            policy: Risk classification rules
            surface: Where pending requests are shown to approvers
            timeout_seconds: Time an approver has before a request expires
            audit_logger: Audit logger for decisions
            metrics: Metric instruments
        """
        self.policy = policy or ApprovalPolicy()
        self.surface = surface
        self.timeout_seconds = timeout_seconds
        self.audit_logger = audit_logger or get_audit_logger()
        self.metrics = metrics or get_runtime_metrics()

        self._pending: Dict[str, Tuple[ApprovalRequest, asyncio.Future]] = {}
        self._audit_records: List[AuditRecord] = []

    def set_surface(self, surface: ApprovalSurface) -> None:
        """Attach the surface used to notify approvers."""
        self.surface = surface

    def classify(self, call: ToolCall, conversation_id: Optional[str] = None) -> RiskLevel:
        """Classify a tool call against the policy.

        Args:
            call: Tool call requested by the provider
            conversation_id: Conversation the call belongs to, for the audit trail

        Returns:
            RiskLevel of the call
        """
        risk, reason = self.policy.evaluate(call.name, call.arguments)

        self._create_audit_record(
            conversation_id, call.call_id, EventType.CLASSIFICATION,
            f"classified_{risk.value}", ResultStatus.SUCCESS, reason,
            {"capability": call.name, "policy_id": self.policy.policy_id}
        )
        logger.debug(f"Classified {call.name} ({call.call_id}) as {risk.value}: {reason}")
        return risk

    async def request(self, call: ToolCall, session: Session) -> ApprovalOutcome:
        """Open an approval request for a call and wait for its outcome."""
        approval = await self.open_request(call, session)
        return await self.wait(approval)

    async def open_request(self, call: ToolCall, session: Session) -> ApprovalRequest:
        """Create a fresh pending request and notify the approval surface.

        A failing notification denies the request immediately.

        Args:
            call: Sensitive tool call
            session: Session the call belongs to

        Returns:
            The new ApprovalRequest (possibly already denied)
        """
        _, reason = self.policy.evaluate(call.name, call.arguments)
        approval = ApprovalRequest.for_call(
            call,
            conversation_id=session.conversation_id,
            timeout_seconds=self.timeout_seconds,
            channel=session.channel,
            reason=reason
        )

        self._register(approval)
        self._create_audit_record(
            approval.conversation_id, approval.call_id, EventType.APPROVAL,
            "approval_requested", ResultStatus.PENDING, reason,
            {"capability": approval.capability, "expires_at": approval.expires_at.isoformat()}
        )
        self.audit_logger.log_approval_event(
            "requested", approval.conversation_id, approval.call_id,
            approval.capability, ApprovalState.PENDING.value,
            metadata={"reason": reason}
        )

        await self._notify(approval)
        return approval

    async def wait(self, approval: ApprovalRequest) -> ApprovalOutcome:
        """Wait for a decision until the request's deadline.

        Returns:
            APPROVED, DENIED or EXPIRED
        """
        entry = self._pending.get(approval.call_id)
        if entry is None:
            if approval.state == ApprovalState.PENDING:
                logger.warning(f"Approval {approval.call_id} is not registered, treating as expired")
                return ApprovalOutcome.EXPIRED
            return ApprovalOutcome(approval.state.value)

        registered, future = entry
        span = create_approval_span(registered.capability, registered.call_id, registered.conversation_id)

        try:
            outcome = await self._await_decision(registered, future)
        except ApprovalTimeout:
            if not self.resolve(registered.call_id, ApprovalOutcome.EXPIRED, resolved_by="system:timeout"):
                # Resolved concurrently with the deadline
                outcome = future.result()
            else:
                outcome = ApprovalOutcome.EXPIRED
        finally:
            self._pending.pop(registered.call_id, None)

        span.set_attribute("approval.outcome", outcome.value)
        span.end()

        # Keep the caller's copy in step with the registered request
        if approval is not registered and approval.is_pending:
            approval.resolve(outcome, registered.resolved_by)

        return outcome

    async def _await_decision(self, approval: ApprovalRequest, future: asyncio.Future) -> ApprovalOutcome:
        """Wait for the decision future until the request's deadline.

        Raises:
            ApprovalTimeout: If the deadline passed without a decision
        """
        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=approval.seconds_remaining())
        except asyncio.TimeoutError as e:
            raise ApprovalTimeout(approval.call_id) from e

    def resolve(
        self,
        call_id: str,
        outcome: ApprovalOutcome,
        resolved_by: Optional[str] = None
    ) -> bool:
        """Record a human (or system) decision for a pending request.

        Args:
            call_id: Tool call the request guards
            outcome: Decision
            resolved_by: Approver identity

        Returns:
            False if no pending request exists or it was already resolved
        """
        entry = self._pending.get(call_id)
        if entry is None:
            logger.info(f"No pending approval for call {call_id}")
            return False

        approval, future = entry
        if not approval.resolve(outcome, resolved_by):
            return False

        if not future.done():
            future.set_result(outcome)

        self._create_audit_record(
            approval.conversation_id, call_id, EventType.APPROVAL,
            f"approval_{outcome.value}", _OUTCOME_RESULTS[outcome], approval.reason,
            {"capability": approval.capability, "resolved_by": resolved_by}
        )
        self.audit_logger.log_approval_event(
            "resolved", approval.conversation_id, call_id,
            approval.capability, outcome.value, resolved_by=resolved_by
        )
        self.metrics.record_approval(approval.capability, outcome.value)

        logger.info(f"Approval for {approval.capability} ({call_id}) {outcome.value} by {resolved_by or 'unknown'}")
        return True

    async def restore(self, approval: ApprovalRequest, notify: bool = True) -> ApprovalRequest:
        """Re-register a persisted pending request, keeping its original deadline.

        Args:
            approval: Request loaded from a persisted session
            notify: Whether to show the request to approvers again

        Returns:
            The registered request
        """
        if not approval.is_pending:
            return approval

        existing = self._pending.get(approval.call_id)
        if existing is not None:
            return existing[0]

        self._register(approval)
        logger.info(
            f"Restored approval for {approval.capability} ({approval.call_id}), "
            f"{approval.seconds_remaining():.0f}s remaining"
        )

        if notify and approval.seconds_remaining() > 0:
            await self._notify(approval)
        return approval

    def get_pending(self, call_id: str) -> Optional[ApprovalRequest]:
        entry = self._pending.get(call_id)
        if entry is None or not entry[0].is_pending:
            return None
        return entry[0]

    def list_pending(self, conversation_id: Optional[str] = None) -> List[ApprovalRequest]:
        """List requests still awaiting a decision, oldest first."""
        pending = [
            approval for approval, _ in self._pending.values()
            if approval.is_pending and (conversation_id is None or approval.conversation_id == conversation_id)
        ]
        pending.sort(key=lambda a: a.created_at)
        return [approval.model_copy() for approval in pending]

    def get_audit_records(
        self,
        conversation_id: Optional[str] = None,
        event_type: Optional[EventType] = None
    ) -> List[AuditRecord]:
        """Get audit records with optional filtering.

        Args:
            conversation_id: Filter by conversation
            event_type: Filter by event type

        Returns:
            List of matching audit records
        """
        records = self._audit_records

        if conversation_id:
            records = [r for r in records if r.conversation_id == conversation_id]

        if event_type:
            records = [r for r in records if r.event_type == event_type]

        return records

    def get_statistics(self) -> Dict[str, Any]:
        outcomes: Dict[str, int] = {}
        for record in self._audit_records:
            if record.event_type == EventType.APPROVAL and record.result != ResultStatus.PENDING:
                outcomes[record.action] = outcomes.get(record.action, 0) + 1

        return {
            "pending": len(self.list_pending()),
            "decisions": outcomes,
            "timeout_seconds": self.timeout_seconds,
            "policy_id": self.policy.policy_id
        }

    def _register(self, approval: ApprovalRequest) -> None:
        future = asyncio.get_running_loop().create_future()
        self._pending[approval.call_id] = (approval, future)

    async def _notify(self, approval: ApprovalRequest) -> None:
        if self.surface is None:
            logger.info(f"No approval surface configured; {approval.call_id} awaits console resolution")
            return

        try:
            await self.surface.notify(approval)
        except Exception as e:
            logger.error(f"Approval surface failed for {approval.call_id}: {e}")
            self.resolve(approval.call_id, ApprovalOutcome.DENIED, resolved_by="system:notify_failed")

    def _create_audit_record(
        self,
        conversation_id: Optional[str],
        call_id: Optional[str],
        event_type: EventType,
        action: str,
        result: ResultStatus,
        reason: Optional[str],
        metadata: Dict[str, Any]
    ) -> None:
        """Create an audit record for a classification or approval decision."""
        audit_record = AuditRecord(
            conversation_id=conversation_id,
            call_id=call_id,
            event_type=event_type,
            action=action,
            result=result,
            reason=reason,
            metadata=metadata
        )
        self._audit_records.append(audit_record)

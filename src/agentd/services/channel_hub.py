"""Channel hub: fan-in of channel adapters and outbound delivery."""

import asyncio
import logging
import re
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from agentd.lib.config import ChannelHubConfig
from agentd.lib.errors import DeliveryError
from agentd.lib.logging_config import AuditLogger, get_audit_logger
from agentd.lib.observability import RuntimeMetrics, get_runtime_metrics
from agentd.models.approval import ApprovalOutcome, ApprovalRequest
from agentd.models.event import Event, EventKind
from agentd.services.approval_gate import ApprovalGate
from agentd.services.interfaces.channel_adapter import ChannelAdapter
from agentd.services.runtime import AgentRuntime


logger = logging.getLogger(__name__)

APPROVAL_COMMAND = re.compile(r"^\s*/(approve|deny)\s+(\S+)\s*$", re.IGNORECASE)

# Pause before pulling again from an adapter whose receive() raised
RECEIVE_RETRY_DELAY = 1.0


def parse_approval_command(text: str) -> Optional[Tuple[ApprovalOutcome, str]]:
    """Parse '/approve <call_id>' or '/deny <call_id>'."""
    match = APPROVAL_COMMAND.match(text or "")
    if not match:
        return None
    verb, call_id = match.groups()
    outcome = ApprovalOutcome.APPROVED if verb.lower() == "approve" else ApprovalOutcome.DENIED
    return outcome, call_id


class ChannelHub:
    """Pulls events from every channel into one bounded inbox and delivers replies.

    Each inbox event is handled by its own task, so a slow conversation never
    holds up another one; ordering within a conversation is left to the
    runtime's admission lock. At most ``inbox_capacity`` events are handled
    at once and at most as many more wait in the inbox; beyond that
    ``submit`` blocks, which stalls the adapters' pumps.
    """

    def __init__(
        self,
        runtime: AgentRuntime,
        gate: ApprovalGate,
        config: Optional[ChannelHubConfig] = None,
        approvers: Optional[Iterable[str]] = None,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[RuntimeMetrics] = None
    ):
        """Initialize the hub and make it the runtime's notifier.

        Args:
            runtime: Agent runtime handling inbound events
            gate: Approval gate for in-channel approval replies
            config: Inbox capacity and shutdown grace period
            approvers: Sender identities allowed to resolve any conversation's approvals
            audit_logger: Audit logger for delivery outcomes
            metrics: Metric instruments
        """
        self.runtime = runtime
        self.gate = gate
        self.config = config or ChannelHubConfig()
        self.approvers: Set[str] = set(approvers or [])
        self.audit_logger = audit_logger or get_audit_logger()
        self.metrics = metrics or get_runtime_metrics()

        self._adapters: Dict[str, ChannelAdapter] = {}
        self._inbox: asyncio.Queue = asyncio.Queue(maxsize=self.config.inbox_capacity)
        self._slots = asyncio.Semaphore(self.config.inbox_capacity)
        self._pumps: List[asyncio.Task] = []
        self._workers: Set[asyncio.Task] = set()
        self._notices: Set[asyncio.Task] = set()
        self._consumer: Optional[asyncio.Task] = None
        self._running = False

        self.runtime.set_notifier(self.deliver)

    def register_channel(self, adapter: ChannelAdapter) -> None:
        """Register a channel adapter. Adapters added after start() get a pump immediately."""
        if adapter.name in self._adapters:
            raise ValueError(f"Channel {adapter.name} is already registered")

        self._adapters[adapter.name] = adapter
        logger.info(f"Registered channel {adapter.name}")

        if self._running:
            self._pumps.append(asyncio.create_task(self._pump(adapter), name=f"pump:{adapter.name}"))

    async def start(self) -> None:
        """Start one pump per adapter and the inbox consumer."""
        if self._running:
            return

        self._running = True
        for adapter in self._adapters.values():
            self._pumps.append(asyncio.create_task(self._pump(adapter), name=f"pump:{adapter.name}"))
        self._consumer = asyncio.create_task(self._consume(), name="hub:consumer")

        logger.info(f"Channel hub started with {len(self._adapters)} channels")

    async def submit(self, event: Event) -> None:
        """Accept an inbound event, waiting while the inbox is full.

        Approval replies are resolved here and never enter the inbox.
        """
        if self._handle_approval_command(event):
            return
        await self._inbox.put(event)

    async def deliver(self, event: Event) -> None:
        """Send an outbound event to its channel.

        Failures are logged and counted, never retried, and never affect
        session state.
        """
        adapter = self._adapters.get(event.channel)
        if adapter is None:
            logger.warning(f"No channel {event.channel} for outbound event {event.event_id}")
            self._record_delivery_failure(event, "unknown channel")
            return

        try:
            await adapter.send(event)
        except DeliveryError as e:
            logger.warning(f"Delivery to {event.channel}/{event.conversation_id} failed: {e}")
            self._record_delivery_failure(event, str(e))
            return
        except Exception as e:
            logger.error(f"Channel {event.channel} raised while sending: {e}", exc_info=True)
            self._record_delivery_failure(event, f"{type(e).__name__}: {e}")
            return

        self.audit_logger.log_delivery_event(event.channel, event.conversation_id, event.event_id, "delivered")

    async def stop(self) -> None:
        """Stop ingestion and let in-flight work finish within the grace period."""
        if not self._running:
            return
        self._running = False

        for pump in self._pumps:
            pump.cancel()
        await asyncio.gather(*self._pumps, return_exceptions=True)
        self._pumps.clear()

        try:
            await asyncio.wait_for(self._inbox.join(), timeout=self.config.shutdown_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                f"Grace period over with {self._inbox.qsize()} queued and "
                f"{len(self._workers)} running events, cancelling"
            )

        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None

        workers = list(self._workers) + list(self._notices)
        for worker in workers:
            worker.cancel()
        await asyncio.gather(*workers, return_exceptions=True)

        await self.runtime.shutdown()
        logger.info("Channel hub stopped")

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "channels": sorted(self._adapters),
            "running": self._running,
            "queued_events": self._inbox.qsize(),
            "inbox_capacity": self.config.inbox_capacity,
            "in_flight_events": len(self._workers)
        }

    async def _pump(self, adapter: ChannelAdapter) -> None:
        while True:
            try:
                event = await adapter.receive()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Channel {adapter.name} receive failed: {e}")
                await asyncio.sleep(RECEIVE_RETRY_DELAY)
                continue

            await self.submit(event)

    async def _consume(self) -> None:
        while True:
            # Events stay in the inbox until a worker slot frees up
            await self._slots.acquire()
            try:
                event = await self._inbox.get()
            except asyncio.CancelledError:
                self._slots.release()
                raise

            worker = asyncio.create_task(self._work(event), name=f"event:{event.event_id}")
            self._workers.add(worker)
            worker.add_done_callback(self._workers.discard)

    async def _work(self, event: Event) -> None:
        try:
            reply = await self.runtime.handle_event(event)
            if reply is not None:
                await self.deliver(reply)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception(f"Unhandled error processing event {event.event_id}")
        finally:
            self._inbox.task_done()
            self._slots.release()

    def _handle_approval_command(self, event: Event) -> bool:
        parsed = parse_approval_command(event.text)
        if parsed is None:
            return False

        outcome, call_id = parsed
        request = self.gate.get_pending(call_id)

        if request is None:
            text = f"There is no pending approval for {call_id}."
        elif not self._may_resolve(event, request):
            logger.warning(f"{event.sender} on {event.channel} may not resolve approval {call_id}")
            text = f"You are not allowed to resolve approval {call_id}."
        elif self.gate.resolve(call_id, outcome, resolved_by=f"{event.channel}:{event.sender}"):
            text = f"Call {call_id} ({request.capability}) {outcome.value}."
        else:
            text = f"Approval {call_id} was already resolved."

        reply = event.reply(text, kind=EventKind.NOTICE)
        notice = asyncio.ensure_future(self.deliver(reply))
        self._notices.add(notice)
        notice.add_done_callback(self._notices.discard)
        return True

    def _may_resolve(self, event: Event, request: ApprovalRequest) -> bool:
        if event.sender in self.approvers:
            return True
        same_channel = request.channel is None or request.channel == event.channel
        return same_channel and request.conversation_id == event.conversation_id

    def _record_delivery_failure(self, event: Event, reason: str) -> None:
        self.metrics.record_delivery_failure(event.channel)
        self.audit_logger.log_delivery_event(
            event.channel, event.conversation_id, event.event_id, "failed", reason=reason
        )

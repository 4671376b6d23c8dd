"""Agent runtime: the per-conversation reasoning and tool-use loop."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from agentd.lib.config import RuntimeConfig
from agentd.lib.errors import (
    LoopLimitExceeded,
    ProviderExhausted,
    ProviderMalformed,
    ProviderRateLimited,
    ProviderTimeout,
    ToolFailureLimitExceeded,
)
from agentd.lib.logging_config import AuditLogger, get_audit_logger
from agentd.lib.observability import (
    RuntimeMetrics,
    create_provider_span,
    create_turn_span,
    get_runtime_metrics,
)
from agentd.lib.resilience import RetryConfig, RetryError, RetryHandler
from agentd.models.approval import ApprovalOutcome
from agentd.models.context import ContextBundle, ContextSnippet
from agentd.models.event import Event, EventKind
from agentd.models.session import Session, SessionStatus
from agentd.models.tool_call import RiskLevel, ToolCall, ToolResult, ToolResultStatus
from agentd.models.turn import MessageRole, Turn
from agentd.services.approval_gate import ApprovalGate
from agentd.services.capability_registry import CapabilityRegistry
from agentd.services.dispatcher import ToolDispatcher
from agentd.services.interfaces.context_provider import ContextProvider, NullContextProvider
from agentd.services.interfaces.provider_gateway import ProviderGateway, ProviderResponse
from agentd.services.session_store import SessionStore


logger = logging.getLogger(__name__)

Notifier = Callable[[Event], Awaitable[None]]

AWAITING_APPROVAL_NOTICE = (
    "Your previous request is awaiting approval. "
    "This message will be handled once it is resolved."
)
PROVIDER_FAILURE_MESSAGE = "I could not reach the language model right now. Please try again later."
UNEXPECTED_FAILURE_MESSAGE = "Something went wrong while handling your message. Please try again."


class AgentRuntime:
    """Drives each conversation's loop: context, provider, tools, approvals.

    Work for one conversation is strictly serialized by a FIFO admission
    lock; different conversations run concurrently and never share a lock.
    """

    def __init__(
        self,
        store: SessionStore,
        gate: ApprovalGate,
        dispatcher: ToolDispatcher,
        registry: CapabilityRegistry,
        provider: ProviderGateway,
        context_provider: Optional[ContextProvider] = None,
        config: Optional[RuntimeConfig] = None,
        notifier: Optional[Notifier] = None,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[RuntimeMetrics] = None
    ):
        """Initialize the runtime.

        Args:
            store: Session store
            gate: Approval gate for sensitive calls
            dispatcher: Executes approved and safe calls
            registry: Source of the capability schemas offered to the provider
            provider: Language model gateway
            context_provider: Memory and RAG retrieval
            config: Loop bounds, retry and timeout settings
            notifier: Sends out-of-band events (notices, prompts, resumed replies)
            audit_logger: Audit logger for session events
            metrics: Metric instruments
        """
        self.store = store
        self.gate = gate
        self.dispatcher = dispatcher
        self.registry = registry
        self.provider = provider
        self.context_provider = context_provider or NullContextProvider()
        self.config = config or RuntimeConfig()
        self.notifier = notifier
        self.audit_logger = audit_logger or get_audit_logger()
        self.metrics = metrics or get_runtime_metrics()

        self._locks: Dict[str, asyncio.Lock] = {}
        self._background: Set[asyncio.Task] = set()

        self._retry = RetryHandler(
            RetryConfig(
                max_attempts=self.config.provider_retry_attempts,
                base_delay=self.config.provider_retry_base_delay,
                max_delay=self.config.provider_retry_max_delay,
                jitter=self.config.provider_retry_jitter
            ),
            retry_on=(ProviderTimeout, ProviderRateLimited, ProviderMalformed),
            metrics=self.metrics
        )

    def set_notifier(self, notifier: Notifier) -> None:
        self.notifier = notifier

    async def handle_event(self, event: Event) -> Optional[Event]:
        """Process one inbound event to completion.

        Events for a busy conversation wait their turn in arrival order.

        Args:
            event: Inbound event from a channel adapter

        Returns:
            The outbound reply, or None for an already processed event
        """
        lock = self._locks.setdefault(event.conversation_id, asyncio.Lock())

        # No await before acquiring: waiters must queue in arrival order
        if lock.locked():
            self._notify_if_awaiting_approval(event)

        async with lock:
            return await self._process(event)

    def _notify_if_awaiting_approval(self, event: Event) -> None:
        if not self.config.notify_when_queued or self.notifier is None:
            return

        snapshot = self.store.peek(event.conversation_id)
        if snapshot is None or snapshot.status != SessionStatus.AWAITING_APPROVAL:
            return

        notice = event.reply(AWAITING_APPROVAL_NOTICE, kind=EventKind.NOTICE)
        self._spawn(self._send(notice))

    async def _process(self, event: Event) -> Optional[Event]:
        session = await self.store.get_or_create(event.conversation_id, event.channel)

        if session.has_processed(event.event_id):
            logger.info(f"Skipping already processed event {event.event_id} for {event.conversation_id}")
            return None

        if session.pending_tool_calls or session.pending_approval or session.is_active:
            self._abandon_interrupted_loop(session)

        reason = "new event after failure" if session.status == SessionStatus.FAILED else None
        self._set_status(session, SessionStatus.RUNNING, reason)
        session.start_turn(event, self.store.processed_event_window)
        await self.store.save(session)

        self.audit_logger.log_session_event(
            "turn_started", session.conversation_id, action="handle_event",
            metadata={"event_id": event.event_id, "channel": event.channel}
        )

        return await self._drive(session, event)

    async def _drive(self, session: Session, event: Event) -> Event:
        """Run the loop and map every way it can end to exactly one reply."""
        span = create_turn_span(session.conversation_id, event.event_id, event.channel)
        self.metrics.loop_started()
        outcome = "completed"

        try:
            reply = await self._run_loop(session, event)

        except ProviderExhausted as e:
            outcome = "provider_exhausted"
            logger.error(f"Provider exhausted for {session.conversation_id}: {e}")
            self._set_status(session, SessionStatus.FAILED, str(e))
            reply = event.reply(PROVIDER_FAILURE_MESSAGE, kind=EventKind.ERROR)

        except ToolFailureLimitExceeded as e:
            outcome = "tool_failure_limit"
            logger.warning(f"Aborting turn for {session.conversation_id}: {e}")
            self._cancel_pending(session, str(e))
            self._set_status(session, SessionStatus.IDLE, str(e))
            reply = event.reply(
                f"I stopped working on this because {e.limit} tool calls in a row failed.",
                kind=EventKind.ERROR
            )

        except LoopLimitExceeded as e:
            outcome = "loop_limit"
            logger.warning(f"Loop limit reached for {session.conversation_id}: {e}")
            self._set_status(session, SessionStatus.IDLE, str(e))
            reply = event.reply(
                f"I stopped after {e.limit} steps without reaching an answer. "
                "Please rephrase or narrow down the request.",
                kind=EventKind.ERROR
            )

        except asyncio.CancelledError:
            outcome = "cancelled"
            logger.info(f"Loop for {session.conversation_id} cancelled, state kept for resumption")
            await self.store.save(session)
            raise

        except Exception as e:
            outcome = "error"
            logger.exception(f"Unexpected error in loop for {session.conversation_id}")
            self._set_status(session, SessionStatus.FAILED, f"{type(e).__name__}: {e}")
            reply = event.reply(UNEXPECTED_FAILURE_MESSAGE, kind=EventKind.ERROR)

        finally:
            self.metrics.loop_finished()
            self.metrics.record_turn(outcome, session.loop_iterations)
            span.set_attribute("turn.outcome", outcome)
            span.end()

        session.current_event = None
        await self.store.save(session)

        self.audit_logger.log_session_event(
            "turn_finished", session.conversation_id, action="handle_event", result=outcome,
            metadata={"event_id": event.event_id, "iterations": session.loop_iterations}
        )
        return reply

    async def _run_loop(self, session: Session, event: Event) -> Event:
        while True:
            if session.pending_tool_calls:
                await self._execute_pending(session)
                continue

            if session.loop_iterations >= self.config.max_iterations:
                raise LoopLimitExceeded(self.config.max_iterations)

            iteration = session.begin_iteration()
            bundle = await self._build_context(session)
            response = await self._call_provider(session, bundle, iteration)

            if response.is_final:
                session.append_turn(Turn(
                    role=MessageRole.ASSISTANT,
                    content=response.final,
                    metadata={"usage": response.usage} if response.usage else {}
                ))
                self._set_status(session, SessionStatus.IDLE)
                return event.reply(response.final)

            calls = self._prepare_calls(session, response.tool_calls)
            session.append_turn(Turn(role=MessageRole.ASSISTANT, content=response.text, tool_calls=calls))
            session.pending_tool_calls = calls
            await self.store.save(session)

    def _prepare_calls(self, session: Session, requested: List[ToolCall]) -> List[ToolCall]:
        """Give every call a runtime-issued id, its canonical name and its risk.

        Providers reuse ids across conversations, while approvals are
        addressed by call id. A short name such as ``refund`` is rewritten to
        the handler it resolves to (``payments.refund``) before classification,
        so the policy always judges the capability that will actually run.
        """
        calls = []
        for call in requested:
            handler = self.registry.resolve(call.name)
            name = handler.name if handler is not None else call.name
            if name != call.name:
                logger.debug(f"Resolved capability {call.name} to {name}")

            prepared = ToolCall(name=name, arguments=call.arguments)
            prepared.risk = self.gate.classify(prepared, session.conversation_id)
            calls.append(prepared)
        return calls

    async def _execute_pending(self, session: Session) -> None:
        """Execute pending calls in order, one result per call."""
        while session.pending_tool_calls:
            call = session.pending_tool_calls[0]

            if call.risk == RiskLevel.SENSITIVE:
                result = await self._await_approval(session, call)
            else:
                result = await self.dispatcher.dispatch(call, session.conversation_id, exact=True)

            session.pending_tool_calls = session.pending_tool_calls[1:]
            session.append_turn(Turn.from_result(result))

            if result.is_failure:
                session.consecutive_tool_failures += 1
            elif result.status == ToolResultStatus.SUCCESS:
                session.consecutive_tool_failures = 0

            await self.store.save(session)

            # The failure that reaches the limit ends the turn
            if session.consecutive_tool_failures >= self.config.max_consecutive_tool_failures:
                raise ToolFailureLimitExceeded(self.config.max_consecutive_tool_failures)

    async def _await_approval(self, session: Session, call: ToolCall) -> ToolResult:
        """Hold a sensitive call until a human decides, then dispatch or refuse it."""
        restored = session.pending_approval
        if restored is not None and restored.call_id != call.call_id:
            restored = None

        self._set_status(session, SessionStatus.AWAITING_APPROVAL, f"approval required for {call.name}")

        if restored is not None and not restored.is_pending:
            # Decided before a restart, result not yet recorded
            outcome = ApprovalOutcome(restored.state.value)
        else:
            if restored is not None:
                approval = await self.gate.restore(restored)
            else:
                approval = await self.gate.open_request(call, session)
                session.pending_approval = approval.model_copy()
                await self.store.save(session)

            # Restored requests are prompted again: the old prompt may predate a restart
            if approval.is_pending and session.current_event is not None:
                prompt = session.current_event.reply(
                    approval.prompt_text(),
                    kind=EventKind.APPROVAL_PROMPT,
                    metadata={"call_id": call.call_id, "capability": call.name}
                )
                await self._send(prompt)

            outcome = await self.gate.wait(approval)

        session.pending_approval = None
        self._set_status(session, SessionStatus.RUNNING, f"approval {outcome.value}")

        if outcome == ApprovalOutcome.APPROVED:
            return await self.dispatcher.dispatch(call, session.conversation_id, exact=True)
        if outcome == ApprovalOutcome.DENIED:
            return ToolResult.refused(call, ToolResultStatus.DENIED, f"the user denied '{call.name}'")
        return ToolResult.refused(call, ToolResultStatus.EXPIRED, f"approval for '{call.name}' timed out")

    async def _build_context(self, session: Session) -> ContextBundle:
        """Assemble the history window and retrieved snippets for one iteration.

        Retrieval is best-effort: failures and timeouts yield no snippets.
        """
        query = session.latest_user_text()
        history = [turn.to_chat_format() for turn in session.history_window(self.config.history_window)]
        snippets: List[ContextSnippet] = []

        if query:
            try:
                snippets = await asyncio.wait_for(
                    self.context_provider.retrieve(query, session.conversation_id),
                    timeout=self.config.context_timeout_seconds
                )
            except asyncio.TimeoutError:
                logger.warning(f"Context retrieval timed out for {session.conversation_id}")
            except Exception as e:
                logger.warning(f"Context retrieval failed for {session.conversation_id}: {e}")

        return ContextBundle(
            conversation_id=session.conversation_id,
            query=query,
            history=history,
            snippets=snippets
        )

    async def _call_provider(self, session: Session, bundle: ContextBundle, iteration: int) -> ProviderResponse:
        """Call the provider with retries and a per-attempt timeout.

        Raises:
            ProviderExhausted: If every attempt failed
        """
        schemas = self.registry.schemas()
        timeout = self.config.provider_timeout_seconds

        async def attempt() -> ProviderResponse:
            try:
                response = await asyncio.wait_for(self.provider.complete(bundle, schemas), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise ProviderTimeout(f"provider did not answer within {timeout:g}s") from e

            if not isinstance(response, ProviderResponse):
                raise ProviderMalformed(f"provider returned {type(response).__name__}")
            return response

        span = create_provider_span(session.conversation_id, iteration)
        try:
            return await self._retry.call(attempt, operation_name="provider.complete")
        except RetryError as e:
            raise ProviderExhausted(e.attempts, e.last_exception) from e
        finally:
            span.end()

    def _abandon_interrupted_loop(self, session: Session) -> None:
        """Close out a loop that a new event interrupts (crash or earlier failure)."""
        self._cancel_pending(session, "superseded by a new message")
        session.pending_approval = None
        if session.status == SessionStatus.AWAITING_APPROVAL:
            self._set_status(session, SessionStatus.RUNNING, "interrupted approval abandoned")

    def _cancel_pending(self, session: Session, reason: str) -> None:
        for call in session.pending_tool_calls:
            session.append_turn(Turn.from_result(
                ToolResult.refused(call, ToolResultStatus.CANCELLED, reason)
            ))
        session.pending_tool_calls = []

    def _set_status(self, session: Session, status: SessionStatus, reason: Optional[str] = None) -> None:
        if session.status == status:
            return
        if not session.transition_to(status, reason):
            logger.warning(
                f"Invalid status transition {session.status.value} -> {status.value} "
                f"for {session.conversation_id}"
            )

    async def _send(self, event: Event) -> None:
        if self.notifier is None:
            logger.debug(f"No notifier configured, dropping {event.kind.value} for {event.conversation_id}")
            return
        try:
            await self.notifier(event)
        except Exception as e:
            logger.error(f"Notifier failed for {event.conversation_id}: {e}")

    def _spawn(self, coro: Awaitable[Any]) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def resume_pending(self) -> List[asyncio.Task]:
        """Re-enter the loop for sessions persisted mid-turn.

        Outstanding approvals keep their original deadline. Replies are sent
        through the notifier.

        Returns:
            One task per resumed conversation
        """
        tasks = []
        for snapshot in await self.store.list_active():
            logger.info(f"Resuming {snapshot.status.value} session {snapshot.conversation_id}")
            tasks.append(self._spawn(self._resume(snapshot.conversation_id)))
        return tasks

    async def _resume(self, conversation_id: str) -> Optional[Event]:
        lock = self._locks.setdefault(conversation_id, asyncio.Lock())
        async with lock:
            session = await self.store.get_or_create(conversation_id)
            if not session.is_active:
                return None

            event = session.current_event
            if event is None:
                logger.warning(f"Session {conversation_id} has no originating event, closing interrupted loop")
                self._abandon_interrupted_loop(session)
                self._set_status(session, SessionStatus.IDLE, "resumed without originating event")
                await self.store.save(session)
                return None

            reply = await self._drive(session, event)

        await self._send(reply)
        return reply

    def get_session_status(self, conversation_id: str) -> Optional[Dict[str, Any]]:
        """Status summary of a conversation, or None if unknown."""
        snapshot = self.store.peek(conversation_id)
        if snapshot is None:
            return None

        summary = snapshot.get_summary()
        lock = self._locks.get(conversation_id)
        summary["busy"] = bool(lock and lock.locked())
        return summary

    def get_statistics(self) -> Dict[str, Any]:
        return {
            "conversations": len(self._locks),
            "busy_conversations": sum(1 for lock in self._locks.values() if lock.locked()),
            "background_tasks": len(self._background),
            "max_iterations": self.config.max_iterations
        }

    async def shutdown(self) -> None:
        """Cancel background work (resumed loops, queued notices)."""
        tasks = list(self._background)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Runtime shut down ({len(tasks)} background tasks cancelled)")

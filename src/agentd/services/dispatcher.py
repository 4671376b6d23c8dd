"""Tool and skill dispatcher with time, output and concurrency bounds."""

import asyncio
import json
import logging
import time
from typing import Any, Optional

from agentd.lib.errors import CapabilityExecutionError, CapabilityNotFound, CapabilityTimeout
from agentd.lib.logging_config import AuditLogger, get_audit_logger
from agentd.lib.observability import RuntimeMetrics, create_dispatch_span, get_runtime_metrics
from agentd.models.tool_call import ToolCall, ToolResult, ToolResultStatus
from agentd.services.capability_registry import CapabilityRegistry, Handler


logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "\n...[truncated]"


class ToolDispatcher:
    """Executes resolved capabilities and turns every outcome into a ToolResult.

    ``dispatch`` never raises for a capability problem. There are no implicit
    retries; the provider sees the failure and decides what to do next.
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        timeout_seconds: float = 60.0,
        max_output_chars: int = 16000,
        max_concurrent: int = 16,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[RuntimeMetrics] = None
    ):
        self.registry = registry
        self.timeout_seconds = timeout_seconds
        self.max_output_chars = max_output_chars
        self.max_concurrent = max_concurrent
        self.audit_logger = audit_logger or get_audit_logger()
        self.metrics = metrics or get_runtime_metrics()

        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._in_flight = 0

    async def dispatch(
        self,
        call: ToolCall,
        conversation_id: Optional[str] = None,
        exact: bool = False
    ) -> ToolResult:
        """Execute a tool call.

        Args:
            call: Call to execute
            conversation_id: Conversation the call belongs to, for logs and spans
            exact: Only run the handler registered under exactly ``call.name``,
                as needed when the call was classified under that name

        Returns:
            ToolResult with status success, not_found, timeout or error
        """
        try:
            handler = self.registry.require(call.name, exact=exact)
        except CapabilityNotFound as e:
            result = ToolResult.refused(call, ToolResultStatus.NOT_FOUND, str(e))
            self._record(call, result, conversation_id)
            return result

        span = create_dispatch_span(handler.name, call.call_id, conversation_id)
        start_time = time.monotonic()

        try:
            output = await self._execute(handler, call)
            result = ToolResult(
                call_id=call.call_id,
                name=handler.name,
                status=ToolResultStatus.SUCCESS,
                output=self._serialize(output)
            )
        except CapabilityTimeout as e:
            result = ToolResult(call_id=call.call_id, name=handler.name, status=ToolResultStatus.TIMEOUT, error=str(e))
        except CapabilityExecutionError as e:
            result = ToolResult(call_id=call.call_id, name=handler.name, status=ToolResultStatus.ERROR, error=str(e))
        except asyncio.CancelledError:
            span.end()
            raise

        result.elapsed_ms = (time.monotonic() - start_time) * 1000
        span.set_attribute("tool_result.status", result.status.value)
        span.end()

        self._record(call, result, conversation_id)
        return result

    async def _execute(self, handler: Handler, call: ToolCall) -> Any:
        """Invoke a handler under the effective timeout and the concurrency bound.

        The time budget covers waiting for a free dispatch slot as well as
        the invocation itself.

        Raises:
            CapabilityTimeout: If the handler exceeded its time budget
            CapabilityExecutionError: If the handler raised
        """
        timeout = self.timeout_seconds
        if handler.timeout_seconds:
            timeout = min(timeout, handler.timeout_seconds)

        async def run() -> Any:
            async with self._semaphore:
                self._in_flight += 1
                try:
                    return await handler.invoke(call.arguments)
                finally:
                    self._in_flight -= 1

        try:
            return await asyncio.wait_for(run(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CapabilityTimeout(
                f"capability '{handler.name}' timed out after {timeout:g}s", handler.name
            ) from e
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Capability {handler.name} ({call.call_id}) raised: {e}", exc_info=True)
            raise CapabilityExecutionError(f"{type(e).__name__}: {e}", handler.name) from e

    def _serialize(self, output: Any) -> str:
        """Render handler output as text within the output ceiling."""
        if output is None:
            text = ""
        elif isinstance(output, str):
            text = output
        elif isinstance(output, bytes):
            text = output.decode("utf-8", errors="replace")
        else:
            try:
                text = json.dumps(output, default=str, ensure_ascii=False)
            except (TypeError, ValueError):
                text = str(output)

        if len(text) > self.max_output_chars:
            keep = max(0, self.max_output_chars - len(TRUNCATION_MARKER))
            text = text[:keep] + TRUNCATION_MARKER
        return text

    def _record(self, call: ToolCall, result: ToolResult, conversation_id: Optional[str]) -> None:
        self.metrics.record_tool_call(result.name, result.status.value, result.elapsed_ms)
        self.audit_logger.log_capability_event(
            result.name, call.call_id, result.status.value,
            elapsed_ms=result.elapsed_ms, conversation_id=conversation_id,
            metadata={"error": result.error} if result.error else None
        )

    def get_statistics(self):
        return {
            "in_flight": self._in_flight,
            "max_concurrent": self.max_concurrent,
            "timeout_seconds": self.timeout_seconds,
            "max_output_chars": self.max_output_chars
        }

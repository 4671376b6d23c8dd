"""
Tracing and metrics instrumentation for the agentd runtime.

Uses the OpenTelemetry API only. Exporters and SDK providers belong to the
hosting process; without them the API falls back to no-op implementations.
"""

from typing import Any, Dict, Optional

from opentelemetry import metrics, trace


INSTRUMENTATION_NAME = "agentd"


def get_tracer() -> trace.Tracer:
    """Get the agentd tracer from the globally configured provider."""
    return trace.get_tracer(INSTRUMENTATION_NAME)


def get_meter() -> metrics.Meter:
    """Get the agentd meter from the globally configured provider."""
    return metrics.get_meter(INSTRUMENTATION_NAME)


def create_turn_span(conversation_id: str, event_id: str, channel: str) -> trace.Span:
    """Create a span covering one inbound event's reasoning loop."""
    tracer = get_tracer()
    return tracer.start_span(
        name="runtime.turn",
        attributes={
            "conversation.id": conversation_id,
            "event.id": event_id,
            "channel.name": channel
        }
    )


def create_provider_span(conversation_id: str, iteration: int) -> trace.Span:
    """Create a span for one provider completion call."""
    tracer = get_tracer()
    return tracer.start_span(
        name="provider.complete",
        attributes={
            "conversation.id": conversation_id,
            "loop.iteration": iteration
        }
    )


def create_dispatch_span(capability: str, call_id: str,
                         conversation_id: Optional[str] = None) -> trace.Span:
    """Create a span for a capability dispatch."""
    tracer = get_tracer()
    attributes: Dict[str, Any] = {
        "capability.name": capability,
        "tool_call.id": call_id
    }

    if conversation_id:
        attributes["conversation.id"] = conversation_id

    return tracer.start_span(name="dispatcher.dispatch", attributes=attributes)


def create_approval_span(capability: str, call_id: str,
                         conversation_id: Optional[str] = None) -> trace.Span:
    """Create a span for approval workflow operations."""
    tracer = get_tracer()
    attributes: Dict[str, Any] = {
        "approval.capability": capability,
        "tool_call.id": call_id
    }

    if conversation_id:
        attributes["conversation.id"] = conversation_id

    return tracer.start_span(name="approval.request", attributes=attributes)


class RuntimeMetrics:
    """Metric instruments for loops, tools, approvals and deliveries."""

    def __init__(self, meter: Optional[metrics.Meter] = None):
        self.meter = meter or get_meter()

        self.turns_total = self.meter.create_counter(
            name="agentd_turns_total",
            description="Completed turns by outcome",
            unit="1"
        )

        self.loop_iterations = self.meter.create_histogram(
            name="agentd_loop_iterations",
            description="Loop iterations needed per turn",
            unit="1"
        )

        self.provider_calls = self.meter.create_counter(
            name="agentd_provider_calls_total",
            description="Provider completion attempts",
            unit="1"
        )

        self.retry_exhausted = self.meter.create_counter(
            name="agentd_retry_exhausted_total",
            description="Operations that exhausted all retries",
            unit="1"
        )

        self.tool_calls = self.meter.create_counter(
            name="agentd_tool_calls_total",
            description="Dispatched tool calls by status",
            unit="1"
        )

        self.tool_duration = self.meter.create_histogram(
            name="agentd_tool_duration_ms",
            description="Tool call execution time",
            unit="ms"
        )

        self.approval_requests = self.meter.create_counter(
            name="agentd_approval_requests_total",
            description="Approval requests by outcome",
            unit="1"
        )

        self.active_loops = self.meter.create_up_down_counter(
            name="agentd_active_loops",
            description="Loops currently executing",
            unit="1"
        )

        self.delivery_failures = self.meter.create_counter(
            name="agentd_delivery_failures_total",
            description="Outbound events that could not be delivered",
            unit="1"
        )

    def record_turn(self, outcome: str, iterations: int) -> None:
        """Record a finished turn."""
        self.turns_total.add(1, {"outcome": outcome})
        self.loop_iterations.record(iterations, {"outcome": outcome})

    def record_retry_attempt(self, operation: str, attempt: int) -> None:
        self.provider_calls.add(1, {"operation": operation, "attempt": str(attempt)})

    def record_retry_exhausted(self, operation: str) -> None:
        self.retry_exhausted.add(1, {"operation": operation})

    def record_tool_call(self, capability: str, status: str, elapsed_ms: float) -> None:
        """Record a dispatched tool call."""
        labels = {"capability": capability, "status": status}
        self.tool_calls.add(1, labels)
        self.tool_duration.record(elapsed_ms, labels)

    def record_approval(self, capability: str, outcome: str) -> None:
        self.approval_requests.add(1, {"capability": capability, "outcome": outcome})

    def loop_started(self) -> None:
        self.active_loops.add(1)

    def loop_finished(self) -> None:
        self.active_loops.add(-1)

    def record_delivery_failure(self, channel: str) -> None:
        self.delivery_failures.add(1, {"channel": channel})


# Global metrics instance
_runtime_metrics: Optional[RuntimeMetrics] = None


def get_runtime_metrics() -> RuntimeMetrics:
    """Get global runtime metrics instruments."""
    global _runtime_metrics
    if _runtime_metrics is None:
        _runtime_metrics = RuntimeMetrics()
    return _runtime_metrics

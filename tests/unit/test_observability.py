"""Unit tests for tracing and metric helpers."""

from unittest.mock import Mock

from agentd.lib.observability import (
    RuntimeMetrics,
    create_approval_span,
    create_dispatch_span,
    create_provider_span,
    create_turn_span,
    get_runtime_metrics,
)


class TestSpans:
    """Spans work without an SDK configured."""

    def test_spans_can_be_used_and_ended(self):
        spans = [
            create_turn_span("conv-1", "evt-1", "slack"),
            create_provider_span("conv-1", 2),
            create_dispatch_span("echo", "call_1", "conv-1"),
            create_approval_span("file_write", "call_2"),
        ]

        for span in spans:
            span.set_attribute("test.attribute", "value")
            span.end()


class TestRuntimeMetrics:
    """Test metric recording against a mock meter."""

    def test_instruments_created(self):
        meter = Mock()

        RuntimeMetrics(meter)

        counter_names = {c.kwargs["name"] for c in meter.create_counter.call_args_list}
        assert "agentd_turns_total" in counter_names
        assert "agentd_approval_requests_total" in counter_names
        meter.create_up_down_counter.assert_called_once()

    def test_record_turn(self):
        metrics = RuntimeMetrics(Mock())

        metrics.record_turn("completed", 3)

        metrics.turns_total.add.assert_called_once_with(1, {"outcome": "completed"})
        metrics.loop_iterations.record.assert_called_once_with(3, {"outcome": "completed"})

    def test_active_loops(self):
        metrics = RuntimeMetrics(Mock())

        metrics.loop_started()
        metrics.loop_finished()

        assert [c.args[0] for c in metrics.active_loops.add.call_args_list] == [1, -1]

    def test_tool_call_labels(self):
        metrics = RuntimeMetrics(Mock())

        metrics.record_tool_call("echo", "success", 12.5)

        labels = {"capability": "echo", "status": "success"}
        metrics.tool_calls.add.assert_called_once_with(1, labels)
        metrics.tool_duration.record.assert_called_once_with(12.5, labels)

    def test_global_instance(self):
        assert get_runtime_metrics() is get_runtime_metrics()

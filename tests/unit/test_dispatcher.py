"""
Unit tests for the tool dispatcher.

Tests result mapping, time and output ceilings and the concurrency bound.
"""

import asyncio
import json

import pytest

from agentd.models.tool_call import ToolCall, ToolResultStatus
from agentd.services.capability_registry import BuiltinTool, CapabilityRegistry, IntegrationAction
from agentd.services.dispatcher import TRUNCATION_MARKER, ToolDispatcher


class TestDispatch:
    """Test dispatch outcomes."""

    @pytest.mark.asyncio
    async def test_success_serializes_output(self, registry, tool_calls):
        dispatcher = ToolDispatcher(registry)

        result = await dispatcher.dispatch(ToolCall(name="echo", arguments={"text": "hi"}), "conv-1")

        assert result.status == ToolResultStatus.SUCCESS
        assert json.loads(result.output) == {"echo": "hi"}
        assert result.name == "echo"
        assert result.elapsed_ms >= 0
        assert tool_calls["echo"] == 1

    @pytest.mark.asyncio
    async def test_unknown_capability(self, registry):
        result = await ToolDispatcher(registry).dispatch(ToolCall(name="teleport"))

        assert result.status == ToolResultStatus.NOT_FOUND
        assert "teleport" in result.error

    @pytest.mark.asyncio
    async def test_disabled_capability(self, registry, tool_calls):
        registry.disable("echo")

        result = await ToolDispatcher(registry).dispatch(ToolCall(name="echo"))

        assert result.status == ToolResultStatus.NOT_FOUND
        assert "echo" not in tool_calls

    @pytest.mark.asyncio
    async def test_ambiguous_capability(self):
        registry = CapabilityRegistry()
        registry.register(IntegrationAction("github", "search", lambda **_: "gh"))
        registry.register(IntegrationAction("notion", "search", lambda **_: "notion"))

        result = await ToolDispatcher(registry).dispatch(ToolCall(name="search"))

        assert result.status == ToolResultStatus.NOT_FOUND
        assert "ambiguous" in result.error

    @pytest.mark.asyncio
    async def test_exception_becomes_error(self, registry):
        result = await ToolDispatcher(registry).dispatch(ToolCall(name="broken"))

        assert result.status == ToolResultStatus.ERROR
        assert "tool exploded" in result.error

    @pytest.mark.asyncio
    async def test_dispatcher_timeout(self, registry):
        dispatcher = ToolDispatcher(registry, timeout_seconds=0.05)

        result = await dispatcher.dispatch(ToolCall(name="slow", arguments={"seconds": 5}))

        assert result.status == ToolResultStatus.TIMEOUT

    @pytest.mark.asyncio
    async def test_handler_timeout_is_tighter(self):
        async def nap():
            await asyncio.sleep(5)

        registry = CapabilityRegistry()
        registry.register(BuiltinTool("nap", nap, timeout_seconds=0.05))

        result = await ToolDispatcher(registry, timeout_seconds=30).dispatch(ToolCall(name="nap"))

        assert result.status == ToolResultStatus.TIMEOUT
        assert "0.05" in result.error

    @pytest.mark.asyncio
    async def test_output_is_truncated(self):
        registry = CapabilityRegistry()
        registry.register(BuiltinTool("dump", lambda: "x" * 10_000))

        result = await ToolDispatcher(registry, max_output_chars=300).dispatch(ToolCall(name="dump"))

        assert len(result.output) == 300
        assert result.output.endswith(TRUNCATION_MARKER)

    @pytest.mark.asyncio
    async def test_none_and_bytes_output(self):
        registry = CapabilityRegistry()
        registry.register(BuiltinTool("nothing", lambda: None))
        registry.register(BuiltinTool("raw", lambda: b"bytes"))
        dispatcher = ToolDispatcher(registry)

        assert (await dispatcher.dispatch(ToolCall(name="nothing"))).output == ""
        assert (await dispatcher.dispatch(ToolCall(name="raw"))).output == "bytes"


class TestConcurrency:
    """Test the global concurrent dispatch bound."""

    @pytest.mark.asyncio
    async def test_max_concurrent(self):
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.02)
            active -= 1
            return "ok"

        registry = CapabilityRegistry()
        registry.register(BuiltinTool("work", work))
        dispatcher = ToolDispatcher(registry, max_concurrent=2)

        results = await asyncio.gather(*(dispatcher.dispatch(ToolCall(name="work")) for _ in range(6)))

        assert all(r.status == ToolResultStatus.SUCCESS for r in results)
        assert peak == 2
        assert dispatcher.get_statistics()["in_flight"] == 0

    @pytest.mark.asyncio
    async def test_waiting_for_a_slot_counts_against_timeout(self):
        release = asyncio.Event()

        async def hold():
            await release.wait()
            return "held"

        async def quick():
            return "quick"

        registry = CapabilityRegistry()
        registry.register(BuiltinTool("hold", hold))
        registry.register(BuiltinTool("quick", quick, timeout_seconds=0.05))
        dispatcher = ToolDispatcher(registry, timeout_seconds=5, max_concurrent=1)

        holder = asyncio.create_task(dispatcher.dispatch(ToolCall(name="hold")))
        while dispatcher.get_statistics()["in_flight"] == 0:
            await asyncio.sleep(0.001)

        result = await asyncio.wait_for(dispatcher.dispatch(ToolCall(name="quick")), timeout=1.0)

        assert result.status == ToolResultStatus.TIMEOUT
        assert dispatcher.get_statistics()["in_flight"] == 1

        release.set()
        assert (await holder).status == ToolResultStatus.SUCCESS
        assert dispatcher.get_statistics()["in_flight"] == 0


class TestExactDispatch:
    """Test dispatch restricted to the classified capability name."""

    @pytest.mark.asyncio
    async def test_short_name_refused_when_exact(self):
        refunds = []
        registry = CapabilityRegistry()
        registry.register(IntegrationAction("payments", "refund", lambda amount=0: refunds.append(amount)))
        dispatcher = ToolDispatcher(registry)

        result = await dispatcher.dispatch(ToolCall(name="refund", arguments={"amount": 5}), exact=True)

        assert result.status == ToolResultStatus.NOT_FOUND
        assert refunds == []

    @pytest.mark.asyncio
    async def test_full_name_runs_when_exact(self):
        registry = CapabilityRegistry()
        registry.register(IntegrationAction("payments", "refund", lambda amount=0: f"refunded {amount}"))

        result = await ToolDispatcher(registry).dispatch(
            ToolCall(name="payments.refund", arguments={"amount": 5}), exact=True
        )

        assert result.status == ToolResultStatus.SUCCESS
        assert result.output == "refunded 5"
        assert result.name == "payments.refund"

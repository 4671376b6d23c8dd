"""Shared fakes and fixtures for agentd tests."""

import asyncio
from types import SimpleNamespace
from typing import Any, Callable, Dict, List, Optional

import pytest

from agentd.lib.config import RuntimeConfig
from agentd.lib.errors import DeliveryError
from agentd.models.approval import ApprovalRequest
from agentd.models.capability import CapabilitySchema
from agentd.models.context import ContextBundle, ContextSnippet
from agentd.models.event import Event
from agentd.models.policy import ApprovalPolicy
from agentd.services.approval_gate import ApprovalGate
from agentd.services.capability_registry import BuiltinTool, CapabilityRegistry
from agentd.services.dispatcher import ToolDispatcher
from agentd.services.interfaces.approval_surface import ApprovalSurface
from agentd.services.interfaces.channel_adapter import ChannelAdapter
from agentd.services.interfaces.context_provider import ContextProvider
from agentd.services.interfaces.provider_gateway import ProviderGateway, ProviderResponse
from agentd.services.runtime import AgentRuntime
from agentd.services.session_store import SessionStore


class ScriptedProvider(ProviderGateway):
    """Provider returning scripted steps in order.

    A step is a ProviderResponse, an exception to raise, or a coroutine
    function taking the ContextBundle. Once the script runs out every call
    answers "done".
    """

    def __init__(self, *steps: Any):
        self.steps = list(steps)
        self.contexts: List[ContextBundle] = []
        self.capabilities: List[List[CapabilitySchema]] = []

    @property
    def call_count(self) -> int:
        return len(self.contexts)

    async def complete(self, context: ContextBundle, capabilities: List[CapabilitySchema]) -> ProviderResponse:
        self.contexts.append(context)
        self.capabilities.append(capabilities)

        if not self.steps:
            return ProviderResponse.answer("done")

        step = self.steps.pop(0)
        if isinstance(step, BaseException):
            raise step
        if callable(step):
            return await step(context)
        return step


class RecordingChannel(ChannelAdapter):
    """In-memory channel: tests push inbound events and read what was sent."""

    def __init__(self, name: str = "test", fail: bool = False):
        self._name = name
        self.fail = fail
        self.inbound: asyncio.Queue = asyncio.Queue()
        self.sent: List[Event] = []

    @property
    def name(self) -> str:
        return self._name

    async def receive(self) -> Event:
        return await self.inbound.get()

    async def send(self, event: Event) -> None:
        if self.fail:
            raise DeliveryError("channel is down", self._name)
        self.sent.append(event)


class RecordingSurface(ApprovalSurface):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.requests: List[ApprovalRequest] = []

    async def notify(self, request: ApprovalRequest) -> None:
        if self.fail:
            raise RuntimeError("surface unavailable")
        self.requests.append(request)


class StaticContextProvider(ContextProvider):
    def __init__(self, snippets: Optional[List[ContextSnippet]] = None, error: Optional[Exception] = None):
        self.snippets = snippets or []
        self.error = error
        self.queries: List[str] = []

    async def retrieve(self, query: str, conversation_id: str) -> List[ContextSnippet]:
        self.queries.append(query)
        if self.error is not None:
            raise self.error
        return list(self.snippets)


def make_event(
    text: str,
    conversation_id: str = "conv-1",
    channel: str = "test",
    sender: str = "alice",
    event_id: Optional[str] = None
) -> Event:
    kwargs: Dict[str, Any] = {}
    if event_id:
        kwargs["event_id"] = event_id
    return Event(channel=channel, conversation_id=conversation_id, sender=sender, text=text, **kwargs)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll until predicate() is true or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


def make_registry(calls: Optional[Dict[str, int]] = None) -> CapabilityRegistry:
    """Registry with a small set of tools; ``calls`` counts invocations per tool."""
    counts = calls if calls is not None else {}

    def counted(name: str, func: Callable[..., Any]) -> Callable[..., Any]:
        async def wrapper(**kwargs):
            counts[name] = counts.get(name, 0) + 1
            result = func(**kwargs)
            if asyncio.iscoroutine(result):
                result = await result
            return result
        return wrapper

    def echo(text: str = "") -> Dict[str, str]:
        return {"echo": text}

    def file_write(path: str, content: str = "") -> str:
        return f"wrote {len(content)} bytes to {path}"

    def broken(**_: Any) -> None:
        raise RuntimeError("tool exploded")

    async def slow(seconds: float = 1.0) -> str:
        await asyncio.sleep(seconds)
        return "slept"

    registry = CapabilityRegistry()
    registry.register(BuiltinTool("echo", counted("echo", echo), description="Echo text back"))
    registry.register(BuiltinTool("file_write", counted("file_write", file_write), description="Write a file"))
    registry.register(BuiltinTool("broken", counted("broken", broken), description="Always fails"))
    registry.register(BuiltinTool("slow", counted("slow", slow), description="Sleeps"))
    return registry


def fast_runtime_config(**overrides: Any) -> RuntimeConfig:
    settings: Dict[str, Any] = {
        "max_iterations": 5,
        "max_consecutive_tool_failures": 3,
        "provider_timeout_seconds": 1.0,
        "provider_retry_attempts": 3,
        "provider_retry_base_delay": 0.0,
        "provider_retry_max_delay": 0.0,
        "provider_retry_jitter": False,
        "context_timeout_seconds": 0.5,
    }
    settings.update(overrides)
    return RuntimeConfig(**settings)


def build_runtime(
    provider: ProviderGateway,
    registry: Optional[CapabilityRegistry] = None,
    surface: Optional[ApprovalSurface] = None,
    approval_timeout: float = 5.0,
    context_provider: Optional[ContextProvider] = None,
    storage_path: Optional[str] = None,
    config: Optional[RuntimeConfig] = None,
    dispatcher_timeout: float = 1.0
) -> SimpleNamespace:
    """Wire a runtime with in-memory collaborators and a recording notifier."""
    if registry is None:
        registry = make_registry()
    store = SessionStore(storage_path=storage_path)
    gate = ApprovalGate(ApprovalPolicy(), surface=surface, timeout_seconds=approval_timeout)
    dispatcher = ToolDispatcher(registry, timeout_seconds=dispatcher_timeout)
    notifications: List[Event] = []

    async def notifier(event: Event) -> None:
        notifications.append(event)

    runtime = AgentRuntime(
        store=store,
        gate=gate,
        dispatcher=dispatcher,
        registry=registry,
        provider=provider,
        context_provider=context_provider,
        config=config or fast_runtime_config(),
        notifier=notifier
    )
    return SimpleNamespace(
        runtime=runtime,
        store=store,
        gate=gate,
        dispatcher=dispatcher,
        registry=registry,
        provider=provider,
        notifications=notifications
    )


@pytest.fixture
def tool_calls():
    """Invocation counts per tool name."""
    return {}


@pytest.fixture
def registry(tool_calls):
    return make_registry(tool_calls)


@pytest.fixture
def surface():
    return RecordingSurface()

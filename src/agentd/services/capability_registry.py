"""Capability registry for builtin tools, skills and integration actions.

All three kinds share one Handler abstraction. The registry resolves names
requested by the provider, tracks which handlers are enabled and loads
third-party handlers from package entry points.
"""

import asyncio
import functools
import importlib
import logging
from abc import ABC, abstractmethod
from importlib.metadata import entry_points
from typing import Any, Callable, Dict, Iterable, List, Optional

from agentd.lib.errors import CapabilityConflict, CapabilityError, CapabilityNotFound
from agentd.models.capability import CapabilityKind, CapabilitySchema


logger = logging.getLogger(__name__)

ENTRY_POINT_GROUP = "agentd.capabilities"


class Handler(ABC):
    """A named, invocable capability."""

    kind = CapabilityKind.TOOL

    def __init__(
        self,
        name: str,
        description: str = "",
        parameters: Optional[Dict[str, Any]] = None,
        timeout_seconds: Optional[float] = None,
        enabled: bool = True
    ):
        if not name or not name.strip():
            raise CapabilityError("Capability name cannot be blank")

        self.name = name.strip()
        self.description = description
        self.parameters = parameters or {"type": "object", "properties": {}}
        self.timeout_seconds = timeout_seconds
        self.enabled = enabled

    @abstractmethod
    async def invoke(self, arguments: Dict[str, Any]) -> Any:
        """Execute the capability with the provider's arguments."""
        pass

    def schema(self) -> CapabilitySchema:
        return CapabilitySchema(
            name=self.name,
            kind=self.kind,
            description=self.description,
            parameters=self.parameters
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, enabled={self.enabled})"


class CallableHandler(Handler):
    """Handler backed by a plain function or coroutine function.

    Synchronous functions run in the default executor so they never block
    the event loop.
    """

    def __init__(self, name: str, func: Callable[..., Any], description: Optional[str] = None, **kwargs):
        super().__init__(name, description=description or (func.__doc__ or "").strip(), **kwargs)
        self.func = func

    async def invoke(self, arguments: Dict[str, Any]) -> Any:
        if asyncio.iscoroutinefunction(self.func):
            return await self.func(**arguments)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(self.func, **arguments))


class BuiltinTool(CallableHandler):
    """Tool shipped with the daemon (filesystem, shell, http and so on)."""

    kind = CapabilityKind.TOOL


class Skill(CallableHandler):
    """User-installable skill.

    A skill without a function is a pure prompt skill: invoking it returns
    its instructions for the provider to follow.
    """

    kind = CapabilityKind.SKILL

    def __init__(
        self,
        name: str,
        instructions: str = "",
        func: Optional[Callable[..., Any]] = None,
        description: Optional[str] = None,
        **kwargs
    ):
        self.instructions = instructions
        super().__init__(name, func or self._instructions, description=description or instructions[:200], **kwargs)

    def _instructions(self, **_: Any) -> str:
        return self.instructions


class IntegrationAction(CallableHandler):
    """One action of a third-party integration, named ``integration.action``."""

    kind = CapabilityKind.INTEGRATION

    def __init__(self, integration: str, action: str, func: Callable[..., Any], **kwargs):
        if "." in integration:
            raise CapabilityError(f"Integration name cannot contain '.': {integration}")
        self.integration = integration
        self.action = action
        super().__init__(f"{integration}.{action}", func, **kwargs)


class CapabilityRegistry:
    """Registry of every invocable capability."""

    def __init__(self):
        self._handlers: Dict[str, Handler] = {}

    def register(self, handler: Handler, replace: bool = False) -> Handler:
        """Register a handler.

        Args:
            handler: Handler to register
            replace: Allow replacing a handler with the same name

        Returns:
            The registered handler

        Raises:
            CapabilityConflict: If the name is taken and replace is False
        """
        if handler.name in self._handlers and not replace:
            raise CapabilityConflict(f"Capability '{handler.name}' is already registered", handler.name)

        self._handlers[handler.name] = handler
        logger.info(f"Registered {handler.kind.value} capability {handler.name}")
        return handler

    def unregister(self, name: str) -> bool:
        return self._handlers.pop(name, None) is not None

    def get(self, name: str) -> Optional[Handler]:
        return self._handlers.get(name)

    def candidates(self, name: str) -> List[Handler]:
        """Enabled handlers a requested name could refer to.

        An exact name wins; otherwise the name is matched against the action
        part of ``integration.action`` names.
        """
        handler = self._handlers.get(name)
        if handler is not None:
            return [handler] if handler.enabled else []

        suffix = f".{name}"
        return [
            h for h in self._handlers.values()
            if h.enabled and h.kind == CapabilityKind.INTEGRATION and h.name.endswith(suffix)
        ]

    def resolve(self, name: str) -> Optional[Handler]:
        """Resolve a name to exactly one enabled handler.

        Returns:
            The handler, or None when the name is unknown, disabled or ambiguous
        """
        matches = self.candidates(name)
        if len(matches) == 1:
            return matches[0]

        if len(matches) > 1:
            logger.warning(f"Capability name '{name}' is ambiguous: {sorted(h.name for h in matches)}")
        return None

    def require(self, name: str, exact: bool = False) -> Handler:
        """Resolve a name or raise.

        Args:
            name: Requested capability name
            exact: Skip short ``action`` name matching

        Raises:
            CapabilityNotFound: If the name is unknown, disabled or ambiguous
        """
        if exact:
            handler = self._handlers.get(name)
            if handler is None or not handler.enabled:
                raise CapabilityNotFound(f"capability '{name}' is not available", name)
            return handler

        handler = self.resolve(name)
        if handler is not None:
            return handler

        matches = self.candidates(name)
        if len(matches) > 1:
            raise CapabilityNotFound(
                f"capability '{name}' is ambiguous: {sorted(h.name for h in matches)}", name
            )
        raise CapabilityNotFound(f"capability '{name}' is not available", name)

    def enable(self, name: str) -> bool:
        return self._set_enabled(name, True)

    def disable(self, name: str) -> bool:
        return self._set_enabled(name, False)

    def _set_enabled(self, name: str, enabled: bool) -> bool:
        handler = self._handlers.get(name)
        if handler is None:
            return False
        handler.enabled = enabled
        logger.info(f"{'Enabled' if enabled else 'Disabled'} capability {name}")
        return True

    def schemas(self) -> List[CapabilitySchema]:
        """Schemas of the enabled capabilities, offered to the provider."""
        return [h.schema() for h in sorted(self._handlers.values(), key=lambda h: h.name) if h.enabled]

    def list_capabilities(self, kind: Optional[CapabilityKind] = None) -> List[Dict[str, Any]]:
        """List registered capabilities with their state.

        Args:
            kind: Only list capabilities of this kind

        Returns:
            Capability summaries sorted by name
        """
        return [
            {
                "name": h.name,
                "kind": h.kind.value,
                "description": h.description,
                "enabled": h.enabled,
                "timeout_seconds": h.timeout_seconds
            }
            for h in sorted(self._handlers.values(), key=lambda h: h.name)
            if kind is None or h.kind == kind
        ]

    def actions_for(self, integration: str) -> List[IntegrationAction]:
        """Registered actions of one integration."""
        return [
            h for h in sorted(self._handlers.values(), key=lambda h: h.name)
            if isinstance(h, IntegrationAction) and h.integration == integration
        ]

    def load_entry_points(self, group: str = ENTRY_POINT_GROUP) -> int:
        """Register handlers advertised by installed packages.

        An entry point may name a Handler instance, an iterable of handlers or
        a factory returning either. Broken entry points are logged and skipped.

        Returns:
            Number of handlers registered
        """
        registered = 0
        for ep in entry_points(group=group):
            try:
                loaded = ep.load()
                for handler in self._expand(loaded):
                    self.register(handler)
                    registered += 1
            except Exception as e:
                logger.error(f"Failed to load capability entry point '{ep.name}': {e}")

        return registered

    def import_handler(self, path: str) -> Handler:
        """Import and register a handler given as ``module:attribute``.

        Raises:
            CapabilityError: If the path cannot be imported or does not name a handler
        """
        module_path, _, attribute = path.partition(":")
        if not module_path or not attribute:
            raise CapabilityError(f"Handler path must look like 'module:attribute': {path}")

        try:
            module = importlib.import_module(module_path)
            loaded = getattr(module, attribute)
        except ImportError as e:
            raise CapabilityError(f"Failed to import {module_path}: {e}") from e
        except AttributeError as e:
            raise CapabilityError(f"{attribute} not found in {module_path}: {e}") from e

        handlers = self._expand(loaded)
        if len(handlers) != 1:
            raise CapabilityError(f"{path} must provide exactly one handler")
        return self.register(handlers[0])

    @staticmethod
    def _expand(loaded: Any) -> List[Handler]:
        if isinstance(loaded, Handler):
            return [loaded]
        if isinstance(loaded, type) and issubclass(loaded, Handler):
            return [loaded()]
        if callable(loaded):
            loaded = loaded()
            if isinstance(loaded, Handler):
                return [loaded]
        if isinstance(loaded, Iterable) and not isinstance(loaded, (str, bytes)):
            handlers = list(loaded)
            if all(isinstance(h, Handler) for h in handlers):
                return handlers
        raise CapabilityError(f"Object {loaded!r} does not provide capability handlers")

    def get_statistics(self) -> Dict[str, Any]:
        by_kind = {kind.value: 0 for kind in CapabilityKind}
        for h in self._handlers.values():
            by_kind[h.kind.value] += 1
        return {
            "total": len(self._handlers),
            "enabled": sum(1 for h in self._handlers.values() if h.enabled),
            "by_kind": by_kind
        }

    def __len__(self) -> int:
        return len(self._handlers)

    def __contains__(self, name: str) -> bool:
        return name in self._handlers

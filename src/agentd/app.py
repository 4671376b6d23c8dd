"""
Application wiring for agentd.

Builds the session store, approval gate, dispatcher, runtime, channel hub
and approval console from one AgentdConfig and owns their startup and
shutdown order.
"""

import logging
from typing import Optional

from fastapi import FastAPI

from agentd.lib.config import AgentdConfig, initialize_config
from agentd.lib.logging_config import get_audit_logger, setup_logging
from agentd.services.approval_api import create_approval_app
from agentd.services.approval_gate import ApprovalGate
from agentd.services.capability_registry import CapabilityRegistry
from agentd.services.channel_hub import ChannelHub
from agentd.services.dispatcher import ToolDispatcher
from agentd.services.interfaces.approval_surface import ApprovalSurface
from agentd.services.interfaces.context_provider import ContextProvider
from agentd.services.interfaces.provider_gateway import ProviderGateway
from agentd.services.runtime import AgentRuntime
from agentd.services.session_store import SessionStore


logger = logging.getLogger("agentd.app")
audit_logger = get_audit_logger()


class AgentdApplication:
    """Main agentd application manager."""

    def __init__(
        self,
        provider: ProviderGateway,
        config: Optional[AgentdConfig] = None,
        config_path: Optional[str] = None,
        registry: Optional[CapabilityRegistry] = None,
        context_provider: Optional[ContextProvider] = None,
        surface: Optional[ApprovalSurface] = None,
        load_plugins: bool = True,
        configure_logging: bool = True
    ):
        """Initialize the application.

        Args:
            provider: Language model gateway
            config: Configuration; loaded from ``config_path`` when omitted
            config_path: Configuration file used when ``config`` is omitted
            registry: Capability registry, a new empty one by default
            context_provider: Memory and RAG retrieval
            surface: Out-of-band approval surface
            load_plugins: Register capabilities advertised by installed packages
            configure_logging: Apply the logging section on initialize()
        """
        self.provider = provider
        self.config = config
        self.config_path = config_path
        self.registry = registry if registry is not None else CapabilityRegistry()
        self.context_provider = context_provider
        self.surface = surface
        self.load_plugins = load_plugins
        self.configure_logging = configure_logging

        self.store: Optional[SessionStore] = None
        self.gate: Optional[ApprovalGate] = None
        self.dispatcher: Optional[ToolDispatcher] = None
        self.runtime: Optional[AgentRuntime] = None
        self.hub: Optional[ChannelHub] = None
        self.app: Optional[FastAPI] = None

    async def initialize(self) -> None:
        """Build every service from its configuration section."""
        try:
            logger.info("Initializing agentd application")
            if self.config is None:
                self.config = initialize_config(self.config_path).get_config()
            config = self.config

            if self.configure_logging:
                setup_logging(config.logging.model_dump())
                logger.info("Logging configured")

            if self.load_plugins:
                loaded = self.registry.load_entry_points()
                logger.info(f"Loaded {loaded} plugin capabilities")

            self.store = SessionStore(
                storage_path=config.session.storage_directory,
                processed_event_window=config.session.processed_event_window
            )
            await self.store.initialize()

            self.gate = ApprovalGate(
                policy=config.approval.policy,
                surface=self.surface,
                timeout_seconds=config.approval.timeout_seconds
            )
            self.dispatcher = ToolDispatcher(
                self.registry,
                timeout_seconds=config.dispatcher.timeout_seconds,
                max_output_chars=config.dispatcher.max_output_chars,
                max_concurrent=config.dispatcher.max_concurrent
            )
            self.runtime = AgentRuntime(
                store=self.store,
                gate=self.gate,
                dispatcher=self.dispatcher,
                registry=self.registry,
                provider=self.provider,
                context_provider=self.context_provider,
                config=config.runtime
            )
            self.hub = ChannelHub(
                self.runtime,
                self.gate,
                config=config.channels,
                approvers=config.approval.approvers
            )

            self.app = create_approval_app(self.gate, self.store, self.runtime)

            audit_logger.log_session_event(
                "system_startup", "system", action="initialize", result="success",
                metadata={
                    "config_path": config.config_file_path,
                    "capabilities": len(self.registry),
                    "policy_id": config.approval.policy.policy_id
                }
            )
            logger.info("agentd application initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize agentd application: {e}")
            audit_logger.log_session_event(
                "system_startup", "system", action="initialize", result="failed",
                metadata={"error": str(e)}
            )
            raise

    async def start(self, resume: bool = True) -> None:
        """Start ingestion and, optionally, resume loops interrupted by a restart."""
        if self.hub is None:
            await self.initialize()

        await self.hub.start()
        if resume:
            tasks = await self.runtime.resume_pending()
            logger.info(f"Resumed {len(tasks)} interrupted conversations")

    async def shutdown(self) -> None:
        """Stop the hub (and with it the runtime), then flush sessions."""
        logger.info("Shutting down agentd application")

        try:
            if self.hub:
                await self.hub.stop()
            elif self.runtime:
                await self.runtime.shutdown()

            if self.store:
                await self.store.shutdown()

            audit_logger.log_session_event("system_shutdown", "system", action="shutdown", result="success")
            logger.info("agentd application shutdown completed")

        except Exception as e:
            logger.error(f"Error during shutdown: {e}")
            audit_logger.log_session_event(
                "system_shutdown", "system", action="shutdown", result="failed",
                metadata={"error": str(e)}
            )

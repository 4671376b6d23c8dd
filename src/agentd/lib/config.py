"""
Configuration management and validation for agentd.

Loads a YAML configuration file, applies environment overrides and validates
everything through pydantic models.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError

from agentd.lib.errors import ConfigurationError
from agentd.models.policy import ApprovalPolicy


logger = logging.getLogger(__name__)


class LoggingConfig(BaseModel):
    """Configuration for logging settings."""
    level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    format: str = Field(default="structured", pattern="^(structured|simple)$")
    directory: Optional[str] = None
    max_file_size: int = Field(default=10 * 1024 * 1024, gt=0)  # 10MB
    backup_count: int = Field(default=5, ge=1)
    include_trace: bool = True
    environment: str = "development"


class RuntimeConfig(BaseModel):
    """Configuration for the reasoning loop."""
    max_iterations: int = Field(default=10, ge=1, le=100)
    max_consecutive_tool_failures: int = Field(
        default=3, ge=1, description="Failed tool calls in a row that abort the turn (reaching it aborts)"
    )
    history_window: int = Field(default=40, ge=1)
    provider_timeout_seconds: float = Field(default=120.0, gt=0)
    provider_retry_attempts: int = Field(default=3, ge=1, le=10)
    provider_retry_base_delay: float = Field(default=1.0, ge=0)
    provider_retry_max_delay: float = Field(default=30.0, ge=0)
    provider_retry_jitter: bool = True
    context_timeout_seconds: float = Field(default=10.0, gt=0)
    notify_when_queued: bool = True


class ApprovalConfig(BaseModel):
    """Configuration for the approval gate."""
    timeout_seconds: float = Field(default=300.0, gt=0)
    approvers: List[str] = Field(default_factory=list, description="Senders allowed to approve any conversation")
    policy: ApprovalPolicy = Field(default_factory=ApprovalPolicy)


class DispatcherConfig(BaseModel):
    """Configuration for capability dispatch limits."""
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_output_chars: int = Field(default=16000, ge=256)
    max_concurrent: int = Field(default=16, ge=1)


class SessionConfig(BaseModel):
    """Configuration for the session store."""
    storage_directory: Optional[str] = "~/.agentd/sessions"
    processed_event_window: int = Field(default=256, ge=1)


class ChannelHubConfig(BaseModel):
    """Configuration for channel ingestion."""
    inbox_capacity: int = Field(default=1000, ge=1)
    shutdown_grace_seconds: float = Field(default=10.0, ge=0)


class AgentdConfig(BaseModel):
    """Main agentd configuration."""
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
    approval: ApprovalConfig = Field(default_factory=ApprovalConfig)
    dispatcher: DispatcherConfig = Field(default_factory=DispatcherConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    channels: ChannelHubConfig = Field(default_factory=ChannelHubConfig)

    # Global settings
    debug: bool = False
    config_file_path: Optional[str] = None


class ConfigurationManager:
    """Manages agentd configuration loading and validation."""

    ENV_MAPPINGS = {
        "AGENTD_LOG_LEVEL": ["logging", "level"],
        "AGENTD_MAX_ITERATIONS": ["runtime", "max_iterations"],
        "AGENTD_APPROVAL_TIMEOUT": ["approval", "timeout_seconds"],
        "AGENTD_SESSION_DIR": ["session", "storage_directory"],
        "AGENTD_DEBUG": ["debug"],
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or self._get_default_config_path()
        self.config: Optional[AgentdConfig] = None

    def _get_default_config_path(self) -> str:
        """Get default configuration file path."""
        if "AGENTD_CONFIG" in os.environ:
            return os.environ["AGENTD_CONFIG"]

        local_config = Path("agentd.yaml")
        if local_config.exists():
            return str(local_config)

        return str(Path("~/.agentd/config.yaml").expanduser())

    def load_config(self, config_path: Optional[str] = None) -> AgentdConfig:
        """Load configuration from file.

        Args:
            config_path: Optional override of the path given at construction

        Returns:
            Validated AgentdConfig

        Raises:
            ConfigurationError: If the file cannot be parsed or fails validation
        """
        path = config_path or self.config_path
        config_file = Path(path).expanduser()

        try:
            if not config_file.exists():
                logger.info(f"Configuration file {config_file} not found, writing defaults")
                self._create_default_config(config_file)

            with open(config_file, "r") as f:
                config_data = yaml.safe_load(f) or {}

            if not isinstance(config_data, dict):
                raise ConfigurationError(f"Configuration root must be a mapping: {config_file}")

            config_data = self._merge_environment_config(config_data)
            config_data["config_file_path"] = str(config_file)

            self.config = AgentdConfig(**config_data)
            return self.config

        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_file}: {e}") from e
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Cannot read configuration {config_file}: {e}") from e

    def _create_default_config(self, config_file: Path) -> None:
        """Create a default configuration file."""
        config_file.parent.mkdir(parents=True, exist_ok=True)

        default_config = AgentdConfig().model_dump(mode="json", exclude={"config_file_path"})

        with open(config_file, "w") as f:
            yaml.safe_dump(default_config, f, default_flow_style=False, indent=2, sort_keys=False)

    def _merge_environment_config(self, config_data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge configuration with environment variables."""
        for env_var, config_path in self.ENV_MAPPINGS.items():
            if env_var not in os.environ:
                continue

            value: Any = os.environ[env_var]

            try:
                if env_var == "AGENTD_MAX_ITERATIONS":
                    value = int(value)
                elif env_var == "AGENTD_APPROVAL_TIMEOUT":
                    value = float(value)
                elif env_var == "AGENTD_DEBUG":
                    value = value.lower() in ("true", "1", "yes")
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for {env_var}: {value}") from e

            current = config_data
            for key in config_path[:-1]:
                current = current.setdefault(key, {})
            current[config_path[-1]] = value

        return config_data

    def get_config(self) -> AgentdConfig:
        """Get the loaded configuration."""
        if self.config is None:
            raise ConfigurationError("Configuration not loaded. Call load_config() first.")
        return self.config

    def validate_config(self) -> List[str]:
        """Validate the current configuration and return any warnings."""
        warnings = []
        config = self.get_config()

        if config.debug and config.logging.environment == "production":
            warnings.append("Debug mode enabled in production environment")

        if config.approval.policy.default_risk.value == "safe" and not config.approval.policy.sensitive_capabilities:
            warnings.append("Approval policy marks every capability safe")

        if config.dispatcher.timeout_seconds > config.approval.timeout_seconds:
            warnings.append("Dispatcher timeout exceeds approval timeout")

        if not config.session.storage_directory:
            warnings.append("Session storage disabled; sessions will not survive a restart")

        return warnings

    def reload_config(self) -> AgentdConfig:
        """Reload configuration from file."""
        return self.load_config()


# Global configuration manager instance
_config_manager: Optional[ConfigurationManager] = None


def initialize_config(config_path: Optional[str] = None) -> ConfigurationManager:
    """Initialize global configuration manager."""
    global _config_manager
    _config_manager = ConfigurationManager(config_path)
    _config_manager.load_config()
    return _config_manager


def get_config_manager() -> ConfigurationManager:
    """Get the global configuration manager instance."""
    if _config_manager is None:
        raise ConfigurationError("Configuration not initialized. Call initialize_config() first.")
    return _config_manager


def get_config() -> AgentdConfig:
    """Get the global configuration."""
    return get_config_manager().get_config()

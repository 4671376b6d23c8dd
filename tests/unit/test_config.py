"""
Unit tests for configuration loading.

Tests YAML loading, defaults written on first run, environment overrides and
validation failures.
"""

import pytest
import yaml

from agentd.lib.config import AgentdConfig, ConfigurationManager, get_config, initialize_config
from agentd.lib.errors import ConfigurationError
from agentd.models.tool_call import RiskLevel


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    for name in list(ConfigurationManager.ENV_MAPPINGS) + ["AGENTD_CONFIG"]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "agentd.yaml"
    path.write_text(yaml.safe_dump({
        "runtime": {"max_iterations": 7, "max_consecutive_tool_failures": 2},
        "approval": {
            "timeout_seconds": 120,
            "approvers": ["ops-lead"],
            "policy": {
                "policy_id": "strict",
                "default_risk": "sensitive",
                "safe_capabilities": ["web_search", "memory_*"]
            }
        },
        "session": {"storage_directory": str(tmp_path / "sessions")}
    }))
    return path


class TestConfigurationManager:
    """Test ConfigurationManager."""

    def test_defaults(self):
        config = AgentdConfig()

        assert config.runtime.max_iterations == 10
        assert config.runtime.max_consecutive_tool_failures == 3
        assert config.approval.timeout_seconds == 300
        assert config.session.processed_event_window == 256

    def test_load_yaml(self, config_file):
        config = ConfigurationManager(str(config_file)).load_config()

        assert config.runtime.max_iterations == 7
        assert config.approval.approvers == ["ops-lead"]
        assert config.approval.policy.policy_id == "strict"
        assert config.approval.policy.evaluate("web_search", {})[0] == RiskLevel.SAFE
        assert config.approval.policy.evaluate("calendar_read", {})[0] == RiskLevel.SENSITIVE
        assert config.config_file_path == str(config_file)

    def test_default_file_written_on_first_run(self, tmp_path):
        path = tmp_path / "nested" / "config.yaml"

        config = ConfigurationManager(str(path)).load_config()

        assert path.exists()
        assert config.runtime.max_iterations == 10
        written = yaml.safe_load(path.read_text())
        assert written["approval"]["policy"]["policy_id"] == "default"

    def test_environment_overrides(self, config_file, monkeypatch):
        monkeypatch.setenv("AGENTD_MAX_ITERATIONS", "3")
        monkeypatch.setenv("AGENTD_APPROVAL_TIMEOUT", "12.5")
        monkeypatch.setenv("AGENTD_LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("AGENTD_SESSION_DIR", "/var/lib/agentd")

        config = ConfigurationManager(str(config_file)).load_config()

        assert config.runtime.max_iterations == 3
        assert config.approval.timeout_seconds == 12.5
        assert config.logging.level == "DEBUG"
        assert config.session.storage_directory == "/var/lib/agentd"

    def test_config_path_from_environment(self, config_file, monkeypatch):
        monkeypatch.setenv("AGENTD_CONFIG", str(config_file))
        assert ConfigurationManager().config_path == str(config_file)

    def test_invalid_environment_value(self, config_file, monkeypatch):
        monkeypatch.setenv("AGENTD_MAX_ITERATIONS", "many")

        with pytest.raises(ConfigurationError):
            ConfigurationManager(str(config_file)).load_config()

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("runtime: [unclosed")

        with pytest.raises(ConfigurationError):
            ConfigurationManager(str(path)).load_config()

    def test_validation_failure(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"runtime": {"max_iterations": 0}}))

        with pytest.raises(ConfigurationError):
            ConfigurationManager(str(path)).load_config()

    def test_get_config_before_load(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ConfigurationManager(str(tmp_path / "x.yaml")).get_config()

    def test_validate_config_warnings(self, tmp_path):
        path = tmp_path / "warn.yaml"
        path.write_text(yaml.safe_dump({
            "dispatcher": {"timeout_seconds": 600},
            "approval": {"timeout_seconds": 60},
            "session": {"storage_directory": None}
        }))
        manager = ConfigurationManager(str(path))
        manager.load_config()

        warnings = manager.validate_config()

        assert "Dispatcher timeout exceeds approval timeout" in warnings
        assert any("Session storage disabled" in w for w in warnings)

    def test_reload_picks_up_changes(self, config_file):
        manager = ConfigurationManager(str(config_file))
        manager.load_config()

        config_file.write_text(yaml.safe_dump({"runtime": {"max_iterations": 4}}))

        assert manager.reload_config().runtime.max_iterations == 4
        assert manager.get_config().runtime.max_iterations == 4

    def test_global_configuration(self, config_file):
        initialize_config(str(config_file))
        assert get_config().runtime.max_iterations == 7

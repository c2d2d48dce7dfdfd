"""
Unit tests for configuration loading and validation.

Tests strict validation and error handling for agent configs.
"""

import dataclasses
import os
import tempfile

import pytest
import yaml

from scrollwork.config.loader import (
    DEFAULT_SOCKET_PATH,
    AgentConfig,
    ProviderCredentials,
    RiskThresholdConfig,
    load_agent_config,
)
from scrollwork.core.errors import ConfigurationError
from scrollwork.core.risk import RiskThresholds
from scrollwork.providers.models import ModelFamily


class TestAgentConfig:
    """Test AgentConfig construction-time validation."""

    def test_defaults(self):
        """Test optional values fall back to defaults."""
        config = AgentConfig(models=("claude-sonnet-4-20250514",), api_key="sk-test")

        assert config.models == ("claude-sonnet-4-20250514",)
        assert config.refresh_interval_minutes == 1
        assert config.refresh_interval_seconds == 60.0
        assert config.socket_path == DEFAULT_SOCKET_PATH
        assert config.startup_timeout_seconds == 5.0
        assert config.thresholds == RiskThresholdConfig()

    def test_models_list_is_stored_as_tuple(self):
        """Test any sequence of models is accepted."""
        config = AgentConfig(models=["gpt-4o", "gpt-4o-mini"], api_key="k")
        assert config.models == ("gpt-4o", "gpt-4o-mini")

    def test_no_models_rejected(self):
        """Test at least one model is required."""
        with pytest.raises(ConfigurationError, match="at least one model"):
            AgentConfig(models=(), api_key="k")

    def test_blank_model_rejected(self):
        """Test model identifiers cannot be blank."""
        with pytest.raises(ConfigurationError, match="cannot be empty"):
            AgentConfig(models=("gpt-4o", "  "), api_key="k")

    @pytest.mark.parametrize("api_key", ["", "   ", None])
    def test_missing_api_key_rejected(self, api_key):
        """Test credentials must be present."""
        with pytest.raises(ConfigurationError, match="api_key is required"):
            AgentConfig(models=("gpt-4o",), api_key=api_key)

    @pytest.mark.parametrize("interval", [0, -1, 1.5, True])
    def test_invalid_refresh_interval_rejected(self, interval):
        """Test the refresh interval must be a positive integer."""
        with pytest.raises(ConfigurationError, match="refresh_interval_minutes"):
            AgentConfig(models=("gpt-4o",), api_key="k", refresh_interval_minutes=interval)

    def test_invalid_startup_timeout_rejected(self):
        """Test the startup deadline must be positive."""
        with pytest.raises(ConfigurationError, match="startup_timeout_seconds"):
            AgentConfig(models=("gpt-4o",), api_key="k", startup_timeout_seconds=0)

    def test_admin_key_falls_back_to_api_key(self):
        """Test the admin key defaults to the API key."""
        config = AgentConfig(models=("gpt-4o",), api_key="api")
        assert config.credentials_for(ModelFamily.OPENAI).admin_key == "api"

        config = AgentConfig(models=("gpt-4o",), api_key="api", admin_key="admin")
        assert config.credentials_for(ModelFamily.OPENAI).admin_key == "admin"

    def test_mixed_models_use_separate_keys(self):
        """Test each provider family resolves to its own keys."""
        config = AgentConfig(
            models=("claude-sonnet-4-20250514", "gpt-4o"),
            anthropic_api_key="sk-ant-api",
            anthropic_admin_key="sk-ant-admin",
            openai_admin_key="sk-admin"
        )

        assert config.model_families == (ModelFamily.ANTHROPIC, ModelFamily.OPENAI)
        assert config.credentials_for(ModelFamily.ANTHROPIC) == ProviderCredentials("sk-ant-api", "sk-ant-admin")
        assert config.credentials_for(ModelFamily.OPENAI) == ProviderCredentials("sk-admin", "sk-admin")

    def test_anthropic_admin_key_falls_back_to_anthropic_api_key(self):
        """Test the Anthropic admin key defaults to the Anthropic API key."""
        config = AgentConfig(
            models=("claude-sonnet-4-20250514", "gpt-4o"),
            anthropic_api_key="sk-ant-api",
            openai_admin_key="sk-admin"
        )

        assert config.credentials_for(ModelFamily.ANTHROPIC).admin_key == "sk-ant-api"

    def test_family_key_wins_over_shared_key(self):
        """Test a family key overrides the shared key for one family."""
        config = AgentConfig(models=("claude-sonnet-4-20250514",), api_key="shared", anthropic_admin_key="sk-ant-admin")

        assert config.credentials_for(ModelFamily.ANTHROPIC) == ProviderCredentials("shared", "sk-ant-admin")

    @pytest.mark.parametrize("keys", [
        {"api_key": "shared"},
        {"api_key": "shared", "admin_key": "shared-admin"},
        {"anthropic_api_key": "sk-ant-api", "openai_admin_key": "sk-admin", "admin_key": "shared-admin"},
    ])
    def test_mixed_models_reject_shared_keys(self, keys):
        """Test one key cannot be sent to both providers."""
        with pytest.raises(ConfigurationError, match="cannot be shared between Anthropic and OpenAI"):
            AgentConfig(models=("claude-sonnet-4-20250514", "gpt-4o"), **keys)

    @pytest.mark.parametrize("keys, missing", [
        ({"openai_admin_key": "sk-admin"}, "anthropic_api_key"),
        ({"anthropic_api_key": "sk-ant-api"}, "openai_admin_key"),
        ({"anthropic_admin_key": "sk-ant-admin", "openai_admin_key": "sk-admin"}, "anthropic_api_key"),
    ])
    def test_mixed_models_require_key_per_family(self, keys, missing):
        """Test every tracked family needs its own key."""
        with pytest.raises(ConfigurationError, match=f"{missing} is required"):
            AgentConfig(models=("claude-sonnet-4-20250514", "gpt-4o"), **keys)

    def test_config_is_immutable(self):
        """Test configuration cannot change after construction."""
        config = AgentConfig(models=("gpt-4o",), api_key="k")
        with pytest.raises(dataclasses.FrozenInstanceError):
            config.api_key = "other"

    def test_configuration_error_is_value_error(self):
        """Test configuration errors remain ValueErrors."""
        with pytest.raises(ValueError):
            AgentConfig(models=(), api_key="k")


class TestRiskThresholdConfig:
    """Test threshold configuration."""

    def test_absolute_thresholds(self):
        """Test absolute thresholds pass through unchanged."""
        thresholds = RiskThresholdConfig(200, 400, 600).to_risk_thresholds()
        assert thresholds == RiskThresholds(200, 400, 600)

    def test_fractional_thresholds_scale_with_quota(self):
        """Test fractions resolve against the quota."""
        config = RiskThresholdConfig(0.5, 0.75, 0.9, quota_tokens=1000)
        assert config.to_risk_thresholds() == RiskThresholds(500, 750, 900)

    def test_degenerate_thresholds_allowed(self):
        """Test equal thresholds are a valid configuration."""
        assert RiskThresholdConfig(0, 0, 0).to_risk_thresholds() == RiskThresholds(0, 0, 0)
        assert RiskThresholdConfig(5, 5, 5).to_risk_thresholds() == RiskThresholds(5, 5, 5)

    def test_unordered_thresholds_rejected(self):
        """Test thresholds must be ordered."""
        with pytest.raises(ConfigurationError, match="ordered"):
            RiskThresholdConfig(400, 200, 600)

    def test_negative_threshold_rejected(self):
        """Test thresholds cannot be negative."""
        with pytest.raises(ConfigurationError, match="low threshold must be >= 0"):
            RiskThresholdConfig(-1, 2, 3)

    def test_non_numeric_threshold_rejected(self):
        """Test thresholds must be numbers."""
        with pytest.raises(ConfigurationError, match="must be a number"):
            RiskThresholdConfig("1", 2, 3)

    def test_invalid_quota_rejected(self):
        """Test quota must be positive."""
        with pytest.raises(ConfigurationError, match="quota_tokens"):
            RiskThresholdConfig(0.1, 0.2, 0.3, quota_tokens=0)


class TestConfigLoading:
    """Test YAML configuration loading."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        """Write configuration data to temporary file."""
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def test_valid_config_loads_correctly(self):
        """Test that a valid configuration loads correctly."""
        config_data = {
            "models": ["claude-sonnet-4-20250514"],
            "api_key": "sk-api",
            "admin_key": "sk-admin",
            "refresh_interval_minutes": 5,
            "thresholds": {"low": 200000, "medium": 400000, "high": 600000},
            "socket_path": "/tmp/custom.sock",
            "startup_timeout_seconds": 10
        }

        config = load_agent_config(self._write_config(config_data))

        assert config.models == ("claude-sonnet-4-20250514",)
        assert config.api_key == "sk-api"
        assert config.admin_key == "sk-admin"
        assert config.refresh_interval_minutes == 5
        assert config.thresholds == RiskThresholdConfig(200000, 400000, 600000)
        assert config.socket_path == "/tmp/custom.sock"
        assert config.startup_timeout_seconds == 10

    def test_minimal_config_uses_defaults(self):
        """Test that only models and api_key are required."""
        config = load_agent_config(self._write_config({"models": ["gpt-4o"], "api_key": "k"}))

        assert config.thresholds == RiskThresholdConfig()
        assert config.socket_path == DEFAULT_SOCKET_PATH
        assert config.admin_key == ""

    def test_single_model_string_accepted(self):
        """Test a single model may be given as a string."""
        config = load_agent_config(self._write_config({"models": "gpt-4o", "api_key": "k"}))
        assert config.models == ("gpt-4o",)

    def test_quota_thresholds_load(self):
        """Test fractional thresholds with a quota."""
        config_data = {
            "models": ["gpt-4o"],
            "api_key": "k",
            "thresholds": {"low": 0.5, "medium": 0.8, "high": 0.95, "quota_tokens": 1000000}
        }

        config = load_agent_config(self._write_config(config_data))

        assert config.thresholds.to_risk_thresholds() == RiskThresholds(500000, 800000, 950000)

    def test_missing_file_raises_error(self):
        """Test that missing config file raises error."""
        with pytest.raises(FileNotFoundError, match="Agent config file not found"):
            load_agent_config("nonexistent.yaml")

    def test_empty_config_raises_error(self):
        """Test that empty config file raises error."""
        config_path = self._write_config({})

        with pytest.raises(ConfigurationError, match="Configuration file is empty"):
            load_agent_config(config_path)

    def test_invalid_yaml_raises_error(self):
        """Test that invalid YAML raises error."""
        config_path = os.path.join(self.temp_dir, "invalid.yaml")
        with open(config_path, 'w') as f:
            f.write("invalid: yaml: content: [")

        with pytest.raises(yaml.YAMLError):
            load_agent_config(config_path)

    def test_unknown_top_level_key_raises_error(self):
        """Test that unknown keys are rejected."""
        config_path = self._write_config({"models": ["gpt-4o"], "api_key": "k", "budget": {}})

        with pytest.raises(ConfigurationError, match="Unknown configuration keys"):
            load_agent_config(config_path)

    def test_missing_models_raises_error(self):
        """Test that models are required."""
        config_path = self._write_config({"api_key": "k"})

        with pytest.raises(ConfigurationError, match="Missing required 'models'"):
            load_agent_config(config_path)

    def test_missing_api_key_raises_error(self):
        """Test that the API key is required."""
        config_path = self._write_config({"models": ["gpt-4o"]})

        with pytest.raises(ConfigurationError, match="Missing required 'api_key'"):
            load_agent_config(config_path)

    def test_empty_api_key_raises_error(self):
        """Test that an empty API key is rejected."""
        config_path = self._write_config({"models": ["gpt-4o"], "api_key": ""})

        with pytest.raises(ConfigurationError, match="api_key is required"):
            load_agent_config(config_path)

    def test_mixed_config_with_provider_keys_loads(self):
        """Test per-provider keys replace the shared API key."""
        config_path = self._write_config({
            "models": ["claude-sonnet-4-20250514", "gpt-4o"],
            "anthropic_api_key": "sk-ant-api",
            "anthropic_admin_key": "sk-ant-admin",
            "openai_admin_key": "sk-admin",
        })

        config = load_agent_config(config_path)

        assert config.api_key == ""
        assert config.credentials_for(ModelFamily.ANTHROPIC) == ProviderCredentials("sk-ant-api", "sk-ant-admin")
        assert config.credentials_for(ModelFamily.OPENAI) == ProviderCredentials("sk-admin", "sk-admin")

    def test_mixed_config_with_shared_key_raises_error(self):
        """Test a shared API key is rejected when both providers are tracked."""
        config_path = self._write_config({
            "models": ["claude-sonnet-4-20250514", "gpt-4o"],
            "api_key": "sk-shared",
        })

        with pytest.raises(ConfigurationError, match="cannot be shared"):
            load_agent_config(config_path)

    def test_mixed_config_missing_provider_key_raises_error(self):
        """Test both providers need a key when tracked together."""
        config_path = self._write_config({
            "models": ["claude-sonnet-4-20250514", "gpt-4o"],
            "anthropic_api_key": "sk-ant-api",
        })

        with pytest.raises(ConfigurationError, match="openai_admin_key is required"):
            load_agent_config(config_path)

    def test_models_must_be_list(self):
        """Test that models must be a list."""
        config_path = self._write_config({"models": {"a": 1}, "api_key": "k"})

        with pytest.raises(ConfigurationError, match="'models' must be a list"):
            load_agent_config(config_path)

    def test_unknown_threshold_key_raises_error(self):
        """Test that unknown threshold keys are rejected."""
        config_path = self._write_config({
            "models": ["gpt-4o"],
            "api_key": "k",
            "thresholds": {"low": 1, "critical": 2}
        })

        with pytest.raises(ConfigurationError, match="Unknown keys in thresholds"):
            load_agent_config(config_path)

    def test_thresholds_must_be_dictionary(self):
        """Test that thresholds must be a mapping."""
        config_path = self._write_config({"models": ["gpt-4o"], "api_key": "k", "thresholds": [1, 2, 3]})

        with pytest.raises(ConfigurationError, match="'thresholds' must be a dictionary"):
            load_agent_config(config_path)

    def test_unordered_thresholds_raise_error(self):
        """Test that threshold ordering is enforced on load."""
        config_path = self._write_config({
            "models": ["gpt-4o"],
            "api_key": "k",
            "thresholds": {"low": 3, "medium": 2, "high": 1}
        })

        with pytest.raises(ConfigurationError, match="ordered"):
            load_agent_config(config_path)

    def test_invalid_refresh_interval_raises_error(self):
        """Test that a non-positive refresh interval is rejected."""
        config_path = self._write_config({
            "models": ["gpt-4o"],
            "api_key": "k",
            "refresh_interval_minutes": 0
        })

        with pytest.raises(ConfigurationError, match="refresh_interval_minutes"):
            load_agent_config(config_path)

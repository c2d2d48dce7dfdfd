"""
Configuration management and loading.

Builds the immutable agent configuration from YAML files or CLI values.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

import yaml

from scrollwork.core.errors import ConfigurationError, UnsupportedModelError
from scrollwork.core.risk import RiskThresholds
from scrollwork.providers.models import ModelFamily, resolve_model_family

DEFAULT_SOCKET_PATH = "/tmp/scrollwork.sock"
DEFAULT_REFRESH_INTERVAL_MINUTES = 1
DEFAULT_STARTUP_TIMEOUT_SECONDS = 5.0

# Per provider keys, required when models span several provider families
CREDENTIAL_KEYS = ('anthropic_api_key', 'anthropic_admin_key', 'openai_admin_key')


@dataclass(frozen=True)
class RiskThresholdConfig:
    """Risk thresholds as configured.

    Thresholds are absolute token counts, or fractions of ``quota_tokens``
    when a quota is given.
    """
    low: float = 0.0
    medium: float = 0.0
    high: float = 0.0
    quota_tokens: Optional[int] = None

    def __post_init__(self):
        """Validate thresholds are non-negative and ordered."""
        for name in ("low", "medium", "high"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigurationError(f"{name} threshold must be a number")
            if value < 0:
                raise ConfigurationError(f"{name} threshold must be >= 0")
        if not self.low <= self.medium <= self.high:
            raise ConfigurationError("thresholds must be ordered: low <= medium <= high")
        if self.quota_tokens is not None and self.quota_tokens <= 0:
            raise ConfigurationError("quota_tokens must be > 0")

    def to_risk_thresholds(self) -> RiskThresholds:
        """Resolve the configured values into absolute token thresholds."""
        scale = self.quota_tokens if self.quota_tokens is not None else 1
        return RiskThresholds(
            low=self.low * scale,
            medium=self.medium * scale,
            high=self.high * scale
        )


@dataclass(frozen=True)
class ProviderCredentials:
    """Keys handed to the client of one provider family."""
    api_key: str
    admin_key: str


# Family specific key that must be set when models span several families
FAMILY_KEY_FIELDS = {
    ModelFamily.ANTHROPIC: "anthropic_api_key",
    ModelFamily.OPENAI: "openai_admin_key",
}


@dataclass(frozen=True)
class AgentConfig:
    """Complete agent configuration, validated once at construction.

    ``api_key`` and ``admin_key`` are shared by every model and are only
    accepted when all models belong to one provider family. Tracking
    Anthropic and OpenAI models together requires the family specific keys.
    """
    models: Tuple[str, ...]
    api_key: str = ""
    admin_key: str = ""
    refresh_interval_minutes: int = DEFAULT_REFRESH_INTERVAL_MINUTES
    thresholds: RiskThresholdConfig = field(default_factory=RiskThresholdConfig)
    socket_path: str = DEFAULT_SOCKET_PATH
    startup_timeout_seconds: float = DEFAULT_STARTUP_TIMEOUT_SECONDS
    anthropic_api_key: str = ""
    anthropic_admin_key: str = ""
    openai_admin_key: str = ""

    def __post_init__(self):
        """Validate models, credentials and intervals."""
        # Accept any iterable of models but store a tuple
        object.__setattr__(self, "models", tuple(self.models or ()))

        if not self.models:
            raise ConfigurationError("at least one model is required")
        for model in self.models:
            if not isinstance(model, str) or not model.strip():
                raise ConfigurationError("model identifiers cannot be empty")

        self._validate_credentials()

        interval = self.refresh_interval_minutes
        if isinstance(interval, bool) or not isinstance(interval, int) or interval <= 0:
            raise ConfigurationError("refresh_interval_minutes must be a positive integer")

        if not self.socket_path:
            raise ConfigurationError("socket_path cannot be empty")

        if self.startup_timeout_seconds <= 0:
            raise ConfigurationError("startup_timeout_seconds must be > 0")

    def _validate_credentials(self) -> None:
        families = self.model_families
        if len(families) > 1:
            if self.api_key or self.admin_key:
                raise ConfigurationError(
                    "api_key and admin_key cannot be shared between Anthropic and OpenAI models; "
                    "set anthropic_api_key and openai_admin_key instead"
                )
            for family in families:
                if not _has_key(self.credentials_for(family)):
                    raise ConfigurationError(
                        f"{FAMILY_KEY_FIELDS[family]} is required when tracking "
                        "both Anthropic and OpenAI models"
                    )
            return

        # Unsupported models are reported when the agent starts
        credentials = self.credentials_for(families[0]) if families else ProviderCredentials(
            api_key=self.api_key or "", admin_key=self.admin_key or ""
        )
        if not _has_key(credentials):
            raise ConfigurationError("api_key is required and cannot be empty")

    @property
    def model_families(self) -> Tuple[ModelFamily, ...]:
        """Provider families of the supported configured models, in order."""
        families = []
        for model in self.models:
            try:
                family = resolve_model_family(model)
            except UnsupportedModelError:
                continue
            if family not in families:
                families.append(family)
        return tuple(families)

    def credentials_for(self, family: ModelFamily) -> ProviderCredentials:
        """Keys for a provider family.

        Family specific keys win over the shared ones. The admin key falls
        back to the API key.
        """
        if family == ModelFamily.ANTHROPIC:
            api_key = self.anthropic_api_key or self.api_key or ""
            admin_key = self.anthropic_admin_key or self.admin_key or api_key
            return ProviderCredentials(api_key=api_key, admin_key=admin_key)

        admin_key = self.openai_admin_key or self.admin_key or self.api_key or ""
        return ProviderCredentials(api_key=admin_key, admin_key=admin_key)

    @property
    def refresh_interval_seconds(self) -> float:
        """Refresh interval in seconds."""
        return float(self.refresh_interval_minutes * 60)


def _has_key(credentials: ProviderCredentials) -> bool:
    return bool(credentials.api_key.strip()) and bool(credentials.admin_key.strip())


def load_agent_config(path: str) -> AgentConfig:
    """Load and validate agent configuration from a YAML file.

    Strict validation ensures no silent misconfigurations: unknown keys
    and missing required values are errors.

    Args:
        path: Path to YAML configuration file

    Returns:
        Validated AgentConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ConfigurationError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Agent config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ConfigurationError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ConfigurationError("Configuration must be a dictionary")

    allowed_top_keys = {
        'models', 'api_key', 'admin_key', 'refresh_interval_minutes',
        'thresholds', 'socket_path', 'startup_timeout_seconds',
        *CREDENTIAL_KEYS
    }
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown configuration keys: {unknown_keys}")

    # Parse models
    if 'models' not in raw_config:
        raise ConfigurationError("Missing required 'models' list")
    models = raw_config['models']
    if isinstance(models, str):
        models = [models]
    if not isinstance(models, list):
        raise ConfigurationError("'models' must be a list of model identifiers")

    if not any(key in raw_config for key in ('api_key', *CREDENTIAL_KEYS)):
        raise ConfigurationError("Missing required 'api_key'")

    thresholds = _parse_thresholds(raw_config.get('thresholds', {}))

    optional: Dict[str, object] = {}
    for key in ('refresh_interval_minutes', 'socket_path', 'startup_timeout_seconds'):
        if raw_config.get(key) is not None:
            optional[key] = raw_config[key]
    for key in ('api_key', 'admin_key', *CREDENTIAL_KEYS):
        if raw_config.get(key) is not None:
            optional[key] = str(raw_config[key])

    return AgentConfig(
        models=tuple(str(model) for model in models),
        thresholds=thresholds,
        **optional
    )


def _parse_thresholds(data: Dict) -> RiskThresholdConfig:
    """Parse and validate the thresholds section.

    Args:
        data: Thresholds configuration data

    Returns:
        Validated RiskThresholdConfig

    Raises:
        ConfigurationError: If the section is invalid
    """
    if data is None:
        return RiskThresholdConfig()
    if not isinstance(data, dict):
        raise ConfigurationError("'thresholds' must be a dictionary")

    allowed_keys = {'low', 'medium', 'high', 'quota_tokens'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ConfigurationError(f"Unknown keys in thresholds: {unknown_keys}")

    quota = data.get('quota_tokens')
    if quota is not None and (isinstance(quota, bool) or not isinstance(quota, int)):
        raise ConfigurationError("'quota_tokens' in thresholds must be an integer")

    return RiskThresholdConfig(
        low=data.get('low', 0.0),
        medium=data.get('medium', 0.0),
        high=data.get('high', 0.0),
        quota_tokens=quota
    )

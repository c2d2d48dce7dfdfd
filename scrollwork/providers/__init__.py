"""
Provider clients for Scrollwork.

One client per model family, selected once when the agent starts.
"""

from typing import TYPE_CHECKING

from .anthropic_client import AnthropicClient
from .base import ProviderClient, ProviderError
from .models import ModelFamily, is_anthropic_model, is_openai_model, resolve_model_family
from .openai_client import OpenAIClient

if TYPE_CHECKING:
    from scrollwork.config.loader import AgentConfig

__all__ = [
    "AnthropicClient",
    "ModelFamily",
    "OpenAIClient",
    "ProviderClient",
    "ProviderError",
    "create_provider_client",
    "is_anthropic_model",
    "is_openai_model",
    "resolve_model_family",
]


def create_provider_client(family: ModelFamily, config: "AgentConfig") -> ProviderClient:
    """Build the client serving a model family with that family's keys."""
    credentials = config.credentials_for(family)
    if family == ModelFamily.ANTHROPIC:
        return AnthropicClient(api_key=credentials.api_key, admin_key=credentials.admin_key)
    if family == ModelFamily.OPENAI:
        return OpenAIClient(admin_key=credentials.admin_key)
    raise ValueError(f"Unsupported model family: {family}")

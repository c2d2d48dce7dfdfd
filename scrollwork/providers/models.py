"""
Model families.

Resolves a model identifier to the vendor API surface that serves it.
"""

from enum import Enum

from scrollwork.core.errors import UnsupportedModelError


class ModelFamily(Enum):
    """Vendor API surface a model identifier belongs to."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"


def is_anthropic_model(model: str) -> bool:
    """Anthropic models, including Bedrock and Vertex identifiers."""
    return "claude-" in model


def is_openai_model(model: str) -> bool:
    """OpenAI chat and completion models."""
    return "gpt-" in model or "text-" in model


def resolve_model_family(model: str) -> ModelFamily:
    """Resolve the provider family for a model identifier.

    Raises:
        UnsupportedModelError: If no supported family matches
    """
    if is_anthropic_model(model):
        return ModelFamily.ANTHROPIC
    if is_openai_model(model):
        return ModelFamily.OPENAI
    raise UnsupportedModelError(model)

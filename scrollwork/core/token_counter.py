"""
Prompt messages and token counting.

Token counts enter the system here; every count is checked before it
reaches the usage store or the classifier.
"""

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional, Sequence

if TYPE_CHECKING:
    from scrollwork.providers.base import ProviderClient


class MessageRole(Enum):
    """Author of a prompt message."""
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass(frozen=True)
class Message:
    """Single prompt message to be counted."""
    role: MessageRole
    content: str
    name: Optional[str] = None


def ensure_token_count(tokens: int, source: str) -> int:
    """Validate a token count produced by an external collaborator.

    Args:
        tokens: Count to validate
        source: Description of where the count came from, for error messages

    Returns:
        The count unchanged

    Raises:
        ValueError: If the count is not a non-negative integer
    """
    if isinstance(tokens, bool) or not isinstance(tokens, int):
        raise ValueError(f"{source} returned a non-integer token count: {tokens!r}")
    if tokens < 0:
        raise ValueError(f"{source} returned a negative token count: {tokens}")
    return tokens


async def count_prompt_tokens(
    client: "ProviderClient",
    model: str,
    messages: Sequence[Message]
) -> int:
    """Count the tokens of a prompt using the provider for its model."""
    if not messages:
        raise ValueError("messages is required and cannot be empty")

    tokens = await client.count_tokens(model, messages)
    return ensure_token_count(tokens, f"count_tokens for {model}")

"""
Provider client interface.

One client per model family. The core only depends on this interface.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional, Sequence, Tuple

from scrollwork.core.token_counter import Message

from .models import ModelFamily


class ProviderError(Exception):
    """Non-transient failure reported by a provider API."""


class ProviderClient(ABC):
    """Capabilities the agent needs from a model provider.

    Implementations raise the builtin ``TimeoutError`` when a request
    times out and ``ProviderError`` for every other API failure.
    """

    family: ModelFamily

    @abstractmethod
    async def health_check(self) -> None:
        """Verify credentials and connectivity."""

    @abstractmethod
    async def fetch_usage_report(self) -> Dict[str, int]:
        """Uncached input tokens per model in the current billing window.

        One report covers every model of the organization; models without
        usage are absent.
        """

    async def fetch_usage(self, model: str) -> int:
        """Uncached input tokens used by a single model."""
        report = await self.fetch_usage_report()
        return report.get(model, 0)

    @abstractmethod
    async def count_tokens(self, model: str, messages: Sequence[Message]) -> int:
        """Number of input tokens a prompt would consume."""

    async def close(self) -> None:
        """Release underlying HTTP resources."""


def usage_window(now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
    """Current daily usage window: today 00:00 UTC to tomorrow 00:00 UTC."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    start = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1)

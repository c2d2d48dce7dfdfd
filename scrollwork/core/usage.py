"""
Usage snapshots and the shared usage store.

The store is written by the agent's ingestion loop and read by
connection handlers; every access holds the store's lock.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Mapping, Tuple

from .errors import UsageFetchError
from .token_counter import ensure_token_count


@dataclass(frozen=True)
class UsageSnapshot:
    """Point-in-time uncached input token counts per model.

    Models whose fetch failed are absent from ``tokens`` so the store keeps
    their previous value. Non-transient failures are carried in ``failures``
    to be reported by the consumer.
    """
    tokens: Mapping[str, int]
    fetched_at: datetime
    failures: Tuple[UsageFetchError, ...] = field(default_factory=tuple)

    @property
    def total_tokens(self) -> int:
        """Sum of tokens across all models in this snapshot."""
        return sum(self.tokens.values())


class UsageStore:
    """Latest known token usage per model.

    Only the latest value per model is kept; there is no history.
    """

    def __init__(self):
        self._tokens: Dict[str, int] = {}
        self._lock = threading.Lock()

    def update(self, model: str, tokens: int) -> None:
        """Replace the count for a single model."""
        ensure_token_count(tokens, f"usage for {model}")
        with self._lock:
            self._tokens[model] = tokens

    def apply(self, snapshot: UsageSnapshot) -> None:
        """Merge every model of a snapshot in one critical section."""
        for model, tokens in snapshot.tokens.items():
            ensure_token_count(tokens, f"usage for {model}")

        with self._lock:
            self._tokens.update(snapshot.tokens)

    def tokens_for(self, model: str) -> int:
        """Last known count for a model, 0 if it never reported."""
        with self._lock:
            return self._tokens.get(model, 0)

    def total_tokens(self) -> int:
        """Sum across all tracked models."""
        with self._lock:
            return sum(self._tokens.values())

    def snapshot(self) -> Dict[str, int]:
        """Copy of the current per-model counts."""
        with self._lock:
            return dict(self._tokens)

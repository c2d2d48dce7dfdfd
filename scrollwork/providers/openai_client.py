"""
OpenAI provider client.

Reads organization completions usage through the Admin API. Prompt
tokens are counted locally with tiktoken.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional, Sequence

import tiktoken
from openai import APIError, APITimeoutError, AsyncOpenAI

from scrollwork.core.token_counter import Message

from .base import ProviderClient, ProviderError, usage_window
from .models import ModelFamily

logger = logging.getLogger(__name__)

ORGANIZATION_PROJECTS_PATH = "/organization/projects"
COMPLETIONS_USAGE_PATH = "/organization/usage/completions"
DEFAULT_TIMEOUT = 30.0
FALLBACK_ENCODING = "cl100k_base"

# Chat format overhead, see the OpenAI cookbook on counting tokens
TOKENS_PER_MESSAGE = 3
TOKENS_PER_NAME = 1
TOKENS_PER_REPLY = 3


class OpenAIClient(ProviderClient):
    """OpenAI client for organization usage and local token counting."""

    family = ModelFamily.OPENAI

    def __init__(self, admin_key: str, timeout: float = DEFAULT_TIMEOUT):
        """Initialize the SDK client.

        Raises:
            ValueError: If the admin key is missing/empty
        """
        if not admin_key:
            raise ValueError("admin_key is required and cannot be empty")

        self._admin_client = AsyncOpenAI(api_key=admin_key, timeout=timeout)

    async def health_check(self) -> None:
        """List a single project to verify the admin key."""
        await self._get(ORGANIZATION_PROJECTS_PATH, {"limit": 1})

    async def fetch_usage_report(self) -> Dict[str, int]:
        return await self.get_organization_completions_usage()

    async def get_organization_completions_usage(
        self,
        now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Uncached input tokens per model for the current daily window."""
        start, end = usage_window(now)
        params: Dict[str, Any] = {
            "start_time": int(start.timestamp()),
            "end_time": int(end.timestamp()),
            "bucket_width": "1d",
            "group_by": "model",
        }

        usage: Dict[str, int] = {}
        while True:
            body = await self._get(COMPLETIONS_USAGE_PATH, params)
            for bucket in body.get("data") or []:
                for result in bucket.get("results") or []:
                    model = result.get("model")
                    if not model:
                        continue
                    input_tokens = int(result.get("input_tokens") or 0)
                    cached_tokens = int(result.get("input_cached_tokens") or 0)
                    usage[model] = usage.get(model, 0) + max(input_tokens - cached_tokens, 0)

            next_page = body.get("next_page")
            if not body.get("has_more") or not next_page:
                break
            params["page"] = next_page

        return usage

    async def count_tokens(self, model: str, messages: Sequence[Message]) -> int:
        encoding = _encoding_for(model)

        tokens = TOKENS_PER_REPLY
        for message in messages:
            tokens += TOKENS_PER_MESSAGE
            tokens += len(encoding.encode(message.role.value, disallowed_special=()))
            tokens += len(encoding.encode(message.content, disallowed_special=()))
            if message.name:
                tokens += TOKENS_PER_NAME
                tokens += len(encoding.encode(message.name, disallowed_special=()))
        return tokens

    async def close(self) -> None:
        await self._admin_client.close()

    async def _get(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """GET an admin endpoint and return the decoded JSON body."""
        try:
            body = await self._admin_client.get(
                path, cast_to=object, options={"params": dict(params)}
            )
        except APITimeoutError as e:
            raise TimeoutError(f"OpenAI request to {path} timed out: {e}") from e
        except APIError as e:
            raise ProviderError(f"OpenAI request to {path} failed: {e}") from e

        if not isinstance(body, dict):
            raise ProviderError(f"OpenAI request to {path} returned an unexpected body")
        logger.debug("OpenAI GET %s succeeded", path)
        return body


def _encoding_for(model: str) -> "tiktoken.Encoding":
    """tiktoken encoding for a model, falling back to cl100k_base."""
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        logger.debug("No tiktoken encoding registered for %s, using %s", model, FALLBACK_ENCODING)
        return tiktoken.get_encoding(FALLBACK_ENCODING)

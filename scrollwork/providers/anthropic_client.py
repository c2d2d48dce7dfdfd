"""
Anthropic provider client.

Reads organization usage through the Admin API and counts prompt tokens
through the Messages API.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from anthropic import APIError, APITimeoutError, AsyncAnthropic

from scrollwork.core.token_counter import Message, MessageRole

from .base import ProviderClient, ProviderError, usage_window
from .models import ModelFamily

logger = logging.getLogger(__name__)

ANTHROPIC_VERSION = "2023-06-01"
ORGANIZATION_INFO_PATH = "/v1/organizations/me"
MESSAGES_USAGE_REPORT_PATH = "/v1/organizations/usage_report/messages"
DEFAULT_TIMEOUT = 30.0


class AnthropicClient(ProviderClient):
    """Anthropic client backed by a messages client and an admin client.

    The admin key is required for the organization endpoints; the API key
    is used for token counting.
    """

    family = ModelFamily.ANTHROPIC

    def __init__(self, api_key: str, admin_key: str, timeout: float = DEFAULT_TIMEOUT):
        """Initialize both SDK clients.

        Raises:
            ValueError: If either key is missing/empty
        """
        if not api_key:
            raise ValueError("api_key is required and cannot be empty")
        if not admin_key:
            raise ValueError("admin_key is required and cannot be empty")

        self._messages_client = AsyncAnthropic(api_key=api_key, timeout=timeout)
        self._admin_client = AsyncAnthropic(
            api_key=admin_key,
            timeout=timeout,
            default_headers={"anthropic-version": ANTHROPIC_VERSION}
        )

    async def health_check(self) -> None:
        """Fetch the current organization to verify the admin key."""
        await self._get(ORGANIZATION_INFO_PATH)

    async def fetch_usage_report(self) -> Dict[str, int]:
        return await self.get_organization_message_usage_report()

    async def get_organization_message_usage_report(
        self,
        now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """Uncached input tokens per model for the current daily window.

        Follows pagination until the report is exhausted.
        """
        starting_at, ending_at = usage_window(now)
        params: Dict[str, Any] = {
            "starting_at": starting_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "ending_at": ending_at.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "bucket_width": "1d",
            "group_by[]": "model",
        }

        usage: Dict[str, int] = {}
        while True:
            body = await self._get(MESSAGES_USAGE_REPORT_PATH, params)
            for bucket in body.get("data") or []:
                for result in bucket.get("results") or []:
                    model = result.get("model")
                    if not model:
                        continue
                    usage[model] = usage.get(model, 0) + int(result.get("uncached_input_tokens") or 0)

            next_page = body.get("next_page")
            if not body.get("has_more") or not next_page:
                break
            params["page"] = next_page

        return usage

    async def count_tokens(self, model: str, messages: Sequence[Message]) -> int:
        system_parts: List[str] = []
        payload: List[Dict[str, str]] = []
        for message in messages:
            if message.role == MessageRole.SYSTEM:
                system_parts.append(message.content)
            else:
                payload.append({"role": message.role.value, "content": message.content})

        kwargs: Dict[str, Any] = {"model": model, "messages": payload}
        if system_parts:
            kwargs["system"] = "\n\n".join(system_parts)

        try:
            response = await self._messages_client.messages.count_tokens(**kwargs)
        except APITimeoutError as e:
            raise TimeoutError(f"Anthropic count_tokens timed out: {e}") from e
        except APIError as e:
            raise ProviderError(f"Anthropic count_tokens failed: {e}") from e

        return response.input_tokens

    async def close(self) -> None:
        await self._messages_client.close()
        await self._admin_client.close()

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """GET an admin endpoint and return the decoded JSON body."""
        options = {"params": dict(params)} if params else {}
        try:
            body = await self._admin_client.get(path, cast_to=object, options=options)
        except APITimeoutError as e:
            raise TimeoutError(f"Anthropic request to {path} timed out: {e}") from e
        except APIError as e:
            raise ProviderError(f"Anthropic request to {path} failed: {e}") from e

        if not isinstance(body, dict):
            raise ProviderError(f"Anthropic request to {path} returned an unexpected body")
        logger.debug("Anthropic GET %s succeeded", path)
        return body

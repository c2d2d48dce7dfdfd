"""
Wire format for assessment requests.

Requests:
    {"model": "claude-...", "messages": [{"role": "user", "content": "..."}]}
    {"prompt": "..."}

Responses:
    {"riskLevel": "low", "totalTokensUsed": 1200, "promptTokens": 42, "model": "..."}
    {"error": "..."}
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from scrollwork.core.risk import Assessment
from scrollwork.core.token_counter import Message, MessageRole

# Longest accepted request line
MAX_LINE_BYTES = 1024 * 1024


class ProtocolError(ValueError):
    """Request line could not be parsed into an assessment request."""


@dataclass(frozen=True)
class AssessmentRequest:
    """Parsed request: the prompt messages and an optional target model."""
    messages: Tuple[Message, ...]
    model: Optional[str] = None


def parse_request(line: bytes) -> AssessmentRequest:
    """Parse and validate a single request line.

    Raises:
        ProtocolError: If the line is not a valid request
    """
    try:
        data = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"invalid JSON: {e}")

    if not isinstance(data, dict):
        raise ProtocolError("request must be a JSON object")

    unknown_keys = set(data.keys()) - {"model", "messages", "prompt"}
    if unknown_keys:
        raise ProtocolError(f"unknown request keys: {sorted(unknown_keys)}")

    model = data.get("model")
    if model is not None and (not isinstance(model, str) or not model.strip()):
        raise ProtocolError("'model' must be a non-empty string")

    if "prompt" in data and "messages" in data:
        raise ProtocolError("use either 'prompt' or 'messages', not both")

    if "prompt" in data:
        prompt = data["prompt"]
        if not isinstance(prompt, str) or not prompt:
            raise ProtocolError("'prompt' must be a non-empty string")
        return AssessmentRequest(messages=(Message(MessageRole.USER, prompt),), model=model)

    raw_messages = data.get("messages")
    if not isinstance(raw_messages, list) or not raw_messages:
        raise ProtocolError("'messages' must be a non-empty list")

    messages = tuple(_parse_message(raw, index) for index, raw in enumerate(raw_messages))
    return AssessmentRequest(messages=messages, model=model)


def _parse_message(raw: Any, index: int) -> Message:
    if not isinstance(raw, dict):
        raise ProtocolError(f"messages[{index}] must be an object")

    try:
        role = MessageRole(raw.get("role"))
    except ValueError:
        valid_roles = [role.value for role in MessageRole]
        raise ProtocolError(f"messages[{index}].role must be one of: {valid_roles}")

    content = raw.get("content")
    if not isinstance(content, str):
        raise ProtocolError(f"messages[{index}].content must be a string")

    name = raw.get("name")
    if name is not None and not isinstance(name, str):
        raise ProtocolError(f"messages[{index}].name must be a string")

    return Message(role=role, content=content, name=name)


def encode_assessment(assessment: Assessment) -> bytes:
    """Serialize an assessment as a response line."""
    return _encode({
        "riskLevel": assessment.risk_level.value,
        "totalTokensUsed": assessment.total_tokens_used,
        "promptTokens": assessment.prompt_tokens,
        "model": assessment.model,
    })


def encode_error(message: str) -> bytes:
    """Serialize an error as a response line."""
    return _encode({"error": message})


def encode_request(prompt: str, model: Optional[str] = None) -> bytes:
    """Serialize a single-prompt request line."""
    payload: Dict[str, Any] = {"prompt": prompt}
    if model:
        payload["model"] = model
    return _encode(payload)


def decode_response(line: bytes) -> Dict[str, Any]:
    """Parse a response line.

    Raises:
        ProtocolError: If the line is not a JSON object
    """
    try:
        data = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"invalid response from agent: {e}")
    if not isinstance(data, dict):
        raise ProtocolError("response must be a JSON object")
    return data


def _encode(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload).encode("utf-8") + b"\n"

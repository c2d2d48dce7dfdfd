"""
Client side of the unix socket protocol.

Used by the CLI to query a running agent.
"""

import asyncio
from typing import Any, Dict, Optional

from .protocol import MAX_LINE_BYTES, ProtocolError, decode_response, encode_request

DEFAULT_REQUEST_TIMEOUT = 30.0


async def request_assessment(
    socket_path: str,
    prompt: str,
    model: Optional[str] = None,
    timeout: float = DEFAULT_REQUEST_TIMEOUT
) -> Dict[str, Any]:
    """Ask a running agent to assess a prompt.

    Args:
        socket_path: Path of the agent's unix socket
        prompt: Prompt text, sent as a single user message
        model: Target model; the agent's first model when omitted
        timeout: Seconds to wait for the response

    Returns:
        Decoded response object, either an assessment or ``{"error": ...}``

    Raises:
        OSError: If the agent is not reachable
        ProtocolError: If the agent's response is malformed
    """
    reader, writer = await asyncio.open_unix_connection(socket_path, limit=MAX_LINE_BYTES)
    try:
        writer.write(encode_request(prompt, model))
        await writer.drain()
        line = await asyncio.wait_for(reader.readline(), timeout)
    finally:
        writer.close()
        await writer.wait_closed()

    if not line:
        raise ProtocolError("agent closed the connection without responding")
    return decode_response(line)


async def is_agent_listening(socket_path: str) -> bool:
    """Whether an agent is accepting connections on the socket path."""
    try:
        _, writer = await asyncio.open_unix_connection(socket_path)
    except OSError:
        return False

    writer.close()
    try:
        await writer.wait_closed()
    except ConnectionError:
        pass
    return True

"""
Per-connection request handling.

Failures are reported on the connection that caused them and never
escape to the accept loop.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence

from scrollwork.core.risk import Assessment
from scrollwork.core.token_counter import Message

from .protocol import ProtocolError, encode_assessment, encode_error, parse_request

logger = logging.getLogger(__name__)

AssessFn = Callable[[Optional[str], Sequence[Message]], Awaitable[Assessment]]


class ConnectionHandler:
    """Serves assessment requests on one stream until the client closes it."""

    def __init__(self, assess: AssessFn):
        self._assess = assess

    async def __call__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        logger.info("Connection accepted")
        try:
            while True:
                try:
                    line = await reader.readline()
                except ValueError:
                    # Line exceeded the stream limit; the stream cannot be resynchronised
                    writer.write(encode_error("request line too long"))
                    await writer.drain()
                    break

                if not line:
                    break
                if not line.strip():
                    continue

                writer.write(await self.respond(line))
                await writer.drain()
        except ConnectionError as e:
            logger.warning("Connection dropped: %s", e)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except ConnectionError as e:
                logger.debug("Error while closing connection: %s", e)
            logger.info("Connection closed")

    async def respond(self, line: bytes) -> bytes:
        """Build the response line for one request line."""
        try:
            request = parse_request(line)
        except ProtocolError as e:
            logger.warning("Rejected malformed request: %s", e)
            return encode_error(str(e))

        try:
            assessment = await self._assess(request.model, request.messages)
        except Exception as e:
            logger.warning("Assessment failed for model %s: %s", request.model, e)
            return encode_error(str(e))

        logger.info(
            "Assessed prompt for %s: %s (%d prompt tokens, %d used)",
            assessment.model,
            assessment.risk_level.value,
            assessment.prompt_tokens,
            assessment.total_tokens_used
        )
        return encode_assessment(assessment)

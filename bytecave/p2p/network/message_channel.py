"""
Length-Prefixed Message Channel

Frames JSON messages over a duplex byte stream.

Format: [length:4 bytes, big-endian][UTF-8 JSON payload:N bytes]

Large frames are written in 64 KiB chunks, waiting for the stream to drain
whenever it reports backpressure. Reads tolerate arbitrary chunk boundaries,
including a length prefix split across chunks.
"""

import asyncio
import json
import struct
import logging
from typing import Any, Optional

from ...core.errors import MessageDecodeError
from ..transport.base import Stream

logger = logging.getLogger(__name__)


# Framing constants
LENGTH_PREFIX_SIZE = 4
CHUNK_SIZE = 64 * 1024  # Frames above this are written in chunks
CHUNK_PAUSE = 0.001  # Seconds to yield between chunks
MESSAGE_SIZE_LIMIT = 32 * 1024 * 1024  # 5MB blobs are ~6.7MB once base64 encoded


def encode_message(message: Any) -> bytes:
    """Serialize a message to a length-prefixed frame."""
    payload = json.dumps(message, separators=(",", ":")).encode("utf-8")
    return struct.pack(">I", len(payload)) + payload


def decode_payload(payload: bytes) -> Any:
    """
    Parse a frame payload.

    Raises:
        MessageDecodeError: payload is not UTF-8 encoded JSON
    """
    try:
        return json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise MessageDecodeError(f"Malformed message payload: {e}") from e


async def write_message(stream: Stream, message: Any):
    """
    Write one framed message to ``stream``.

    Args:
        stream: Destination stream
        message: JSON-serializable message
    """
    data = encode_message(message)

    if len(data) <= CHUNK_SIZE:
        if not stream.send(data):
            await stream.on_drain()
        return

    total = len(data)
    for offset in range(0, total, CHUNK_SIZE):
        if not stream.send(data[offset:offset + CHUNK_SIZE]):
            await stream.on_drain()
        if offset + CHUNK_SIZE < total:
            await asyncio.sleep(CHUNK_PAUSE)

    logger.debug(f"Wrote {total} byte frame in {-(-total // CHUNK_SIZE)} chunks")


async def read_message(stream: Stream, size_limit: int = MESSAGE_SIZE_LIMIT) -> Optional[Any]:
    """
    Read one framed message from ``stream``.

    Returns:
        Parsed message, or None if the stream ended before a full frame arrived

    Raises:
        MessageDecodeError: declared length above ``size_limit`` or malformed payload
    """
    prefix = bytearray()
    buffer: Optional[bytearray] = None
    length = 0
    received = 0

    async for chunk in stream:
        view = memoryview(chunk)

        if buffer is None:
            needed = LENGTH_PREFIX_SIZE - len(prefix)
            prefix += view[:needed]
            view = view[needed:]
            if len(prefix) < LENGTH_PREFIX_SIZE:
                continue

            length = struct.unpack(">I", bytes(prefix))[0]
            if length > size_limit:
                raise MessageDecodeError(f"Message too large: {length} bytes")
            buffer = bytearray(length)

        take = min(len(view), length - received)
        buffer[received:received + take] = view[:take]
        received += take

        if received >= length:
            return decode_payload(bytes(buffer))

    if prefix:
        logger.debug(f"Stream ended after {received}/{length} payload bytes")
    return None


class MessageChannel:
    """Convenience wrapper binding the framing functions to one stream."""

    def __init__(self, stream: Stream, size_limit: int = MESSAGE_SIZE_LIMIT):
        self.stream = stream
        self.size_limit = size_limit

    async def write(self, message: Any):
        await write_message(self.stream, message)

    async def read(self) -> Optional[Any]:
        return await read_message(self.stream, self.size_limit)

    async def close(self):
        await self.stream.close()

"""Base-128 varint encoding shared by the frame header and protobuf payloads."""

from __future__ import annotations

import asyncio

from esphome_native.protocol.exceptions import MalformedVarintError, TruncatedFrameError

# Enough groups for a 64-bit value
MAX_VARINT_BYTES = 10


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer as little-endian base-128 groups."""
    if value < 0:
        msg = f"varint cannot encode negative value {value}"
        raise ValueError(msg)

    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a varint from ``data`` starting at ``offset``.

    Returns:
        Tuple of (value, offset just past the varint)

    Raises:
        MalformedVarintError: More than 10 bytes, or data ends before the final byte
    """
    result = 0
    shift = 0
    for count in range(MAX_VARINT_BYTES):
        index = offset + count
        if index >= len(data):
            raise MalformedVarintError("varint_unterminated", data[offset:])
        byte = data[index]
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result, index + 1
        shift += 7
    raise MalformedVarintError("varint_too_long", data[offset : offset + MAX_VARINT_BYTES])


async def read_varint(reader: asyncio.StreamReader) -> int:
    """Read one varint from a stream, one byte at a time.

    Raises:
        TruncatedFrameError: Stream ended before the final byte
        MalformedVarintError: More than 10 bytes
    """
    result = 0
    shift = 0
    consumed = bytearray()
    for _ in range(MAX_VARINT_BYTES):
        try:
            chunk = await reader.readexactly(1)
        except asyncio.IncompleteReadError as err:
            raise TruncatedFrameError(len(consumed) + 1, len(consumed), bytes(consumed)) from err
        byte = chunk[0]
        consumed.append(byte)
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return result
        shift += 7
    raise MalformedVarintError("varint_too_long", bytes(consumed))

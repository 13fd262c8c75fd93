"""Plaintext frame codec for the native API wire envelope.

Frame layout::

    0x00 | varint(len(payload)) | varint(type_tag) | payload

The codec only knows the envelope. Payload bytes are handed to the message
catalogue untouched.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Protocol

from esphome_native.const import ESPHOME_NATIVE_MAX_FRAME_SIZE
from esphome_native.protocol.exceptions import (
    EncryptionRequiredError,
    FrameTooLargeError,
    InvalidPreambleError,
    TransportError,
    TruncatedFrameError,
)
from esphome_native.protocol.varint import encode_varint, read_varint

logger = logging.getLogger(__name__)

PLAINTEXT_PREAMBLE = 0x00
NOISE_PREAMBLE = 0x01


@dataclass(frozen=True)
class Frame:
    """One decoded envelope."""

    type_tag: int
    payload: bytes


class FrameCodec(Protocol):
    """Envelope strategy used by the frame channel (plaintext or Noise)."""

    max_frame_size: int

    def encode(self, type_tag: int, payload: bytes) -> bytes: ...

    async def read_frame(self, reader: asyncio.StreamReader) -> Frame: ...


def encode_frame(type_tag: int, payload: bytes) -> bytes:
    """Serialize a complete plaintext frame."""
    return b"".join(
        (
            bytes((PLAINTEXT_PREAMBLE,)),
            encode_varint(len(payload)),
            encode_varint(type_tag),
            payload,
        ),
    )


async def read_frame(
    reader: asyncio.StreamReader,
    max_frame_size: int = ESPHOME_NATIVE_MAX_FRAME_SIZE,
) -> Frame:
    """Read one plaintext frame, waiting until header and payload are complete.

    Raises:
        TransportError: Stream closed at a frame boundary, or read failed
        TruncatedFrameError: Stream closed mid-frame
        FrameTooLargeError: Declared length above ``max_frame_size``
        MalformedVarintError: Header varint longer than 10 bytes
        EncryptionRequiredError: Device speaks the encrypted protocol
        InvalidPreambleError: Unknown preamble byte
    """
    try:
        try:
            header = await reader.readexactly(1)
        except asyncio.IncompleteReadError as err:
            raise TransportError("connection_closed_by_peer") from err

        preamble = header[0]
        if preamble == NOISE_PREAMBLE:
            raise EncryptionRequiredError
        if preamble != PLAINTEXT_PREAMBLE:
            raise InvalidPreambleError(preamble)

        length = await read_varint(reader)
        if length > max_frame_size:
            logger.warning(
                "Rejecting frame: declared length %d exceeds maximum %d",
                length,
                max_frame_size,
                extra={"declared_length": length, "max_frame_size": max_frame_size},
            )
            raise FrameTooLargeError(length, max_frame_size)

        type_tag = await read_varint(reader)

        try:
            payload = await reader.readexactly(length) if length else b""
        except asyncio.IncompleteReadError as err:
            raise TruncatedFrameError(length, len(err.partial), err.partial) from err
    except OSError as err:
        raise TransportError(f"read_failed: {err}") from err

    return Frame(type_tag=type_tag, payload=payload)


async def write_frame(writer: asyncio.StreamWriter, type_tag: int, payload: bytes) -> None:
    """Write a whole plaintext frame and wait until it is flushed.

    Callers sharing a writer must serialize calls (the frame channel holds a
    lock for this).
    """
    data = encode_frame(type_tag, payload)
    try:
        writer.write(data)
        await writer.drain()
    except OSError as err:
        raise TransportError(f"write_failed: {err}") from err


class PlaintextFrameCodec:
    """Frame codec for unencrypted connections."""

    def __init__(self, max_frame_size: int = ESPHOME_NATIVE_MAX_FRAME_SIZE) -> None:
        self.max_frame_size = max_frame_size

    def encode(self, type_tag: int, payload: bytes) -> bytes:
        return encode_frame(type_tag, payload)

    async def read_frame(self, reader: asyncio.StreamReader) -> Frame:
        return await read_frame(reader, self.max_frame_size)

    def __repr__(self) -> str:
        return f"PlaintextFrameCodec(max_frame_size={self.max_frame_size})"

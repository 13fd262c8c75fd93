"""Unit tests for the plaintext frame codec."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from esphome_native.protocol.exceptions import (
    EncryptionRequiredError,
    FrameTooLargeError,
    InvalidPreambleError,
    MalformedVarintError,
    TransportError,
    TruncatedFrameError,
)
from esphome_native.protocol.frame_codec import (
    Frame,
    PlaintextFrameCodec,
    encode_frame,
    read_frame,
    write_frame,
)
from esphome_native.protocol.varint import encode_varint
from tests.helpers.expectations import expect_async_exception

# Test constants
PING_REQUEST_TAG = 7
HELLO_REQUEST_TAG = 1
LARGE_TAG = 300
SMALL_MAX_FRAME = 64
OVERSIZED_LENGTH = 70000
PAYLOAD_200 = bytes(range(200))
READ_DEADLINE = 1.0


def reader_with(data: bytes, *, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    reader.feed_data(data)
    if eof:
        reader.feed_eof()
    return reader


class TestEncodeFrame:
    """Tests for encode_frame."""

    def test_empty_payload(self) -> None:
        assert encode_frame(PING_REQUEST_TAG, b"") == b"\x00\x00\x07"

    def test_small_payload(self) -> None:
        assert encode_frame(HELLO_REQUEST_TAG, b"abc") == b"\x00\x03\x01abc"

    def test_multi_byte_length_and_tag(self) -> None:
        frame = encode_frame(LARGE_TAG, PAYLOAD_200)
        assert frame == b"\x00" + encode_varint(200) + encode_varint(LARGE_TAG) + PAYLOAD_200
        assert frame[1:3] == b"\xc8\x01"


class TestReadFrame:
    """Tests for read_frame."""

    @pytest.mark.asyncio
    async def test_round_trip_multiple_frames(self) -> None:
        frames = [Frame(HELLO_REQUEST_TAG, b"hello"), Frame(PING_REQUEST_TAG, b""), Frame(LARGE_TAG, PAYLOAD_200)]
        reader = reader_with(b"".join(encode_frame(f.type_tag, f.payload) for f in frames))

        decoded = [await read_frame(reader) for _ in frames]

        assert decoded == frames

    @pytest.mark.asyncio
    async def test_frame_split_across_feeds(self) -> None:
        data = encode_frame(LARGE_TAG, PAYLOAD_200)
        reader = asyncio.StreamReader()
        task = asyncio.create_task(read_frame(reader))
        for i in range(0, len(data), 7):
            reader.feed_data(data[i : i + 7])
            await asyncio.sleep(0)

        frame = await asyncio.wait_for(task, READ_DEADLINE)

        assert frame == Frame(LARGE_TAG, PAYLOAD_200)

    @pytest.mark.asyncio
    async def test_oversized_frame_rejected_before_payload_read(self) -> None:
        tail = b"xyz"
        reader = reader_with(b"\x00" + encode_varint(OVERSIZED_LENGTH) + encode_varint(1) + tail, eof=False)

        err = await asyncio.wait_for(
            expect_async_exception(read_frame, FrameTooLargeError, reader, SMALL_MAX_FRAME),
            READ_DEADLINE,
        )

        assert err.declared_length == OVERSIZED_LENGTH
        assert err.max_frame_size == SMALL_MAX_FRAME
        # Type tag and payload were never consumed
        assert await reader.read(10) == encode_varint(1) + tail

    @pytest.mark.asyncio
    async def test_clean_eof_at_boundary_is_transport_error(self) -> None:
        err = await expect_async_exception(read_frame, TransportError, reader_with(b""))
        assert err.reason == "connection_closed_by_peer"

    @pytest.mark.asyncio
    async def test_eof_mid_payload_is_truncation(self) -> None:
        data = encode_frame(HELLO_REQUEST_TAG, b"abcdef")[:-2]
        err = await expect_async_exception(read_frame, TruncatedFrameError, reader_with(data))
        assert err.expected == 6
        assert err.received == 4
        assert err.data_preview == b"abcd"

    @pytest.mark.asyncio
    async def test_eof_mid_header_is_truncation(self) -> None:
        await expect_async_exception(read_frame, TruncatedFrameError, reader_with(b"\x00\x80"))

    @pytest.mark.asyncio
    async def test_overlong_length_varint(self) -> None:
        err = await expect_async_exception(read_frame, MalformedVarintError, reader_with(b"\x00" + b"\xff" * 11))
        assert err.reason == "varint_too_long"

    @pytest.mark.asyncio
    async def test_noise_preamble_means_encryption_required(self) -> None:
        await expect_async_exception(read_frame, EncryptionRequiredError, reader_with(b"\x01\x00\x05"))

    @pytest.mark.asyncio
    async def test_unknown_preamble(self) -> None:
        err = await expect_async_exception(read_frame, InvalidPreambleError, reader_with(b"\x42\x00\x07"))
        assert err.preamble == 0x42

    @pytest.mark.asyncio
    async def test_os_error_becomes_transport_error(self) -> None:
        reader = MagicMock()
        reader.readexactly = AsyncMock(side_effect=ConnectionResetError("reset"))
        err = await expect_async_exception(read_frame, TransportError, reader)
        assert err.reason.startswith("read_failed")
        assert isinstance(err.__cause__, ConnectionResetError)


class TestWriteFrame:
    """Tests for write_frame."""

    @pytest.mark.asyncio
    async def test_single_write_then_drain(self) -> None:
        writer = MagicMock()
        writer.drain = AsyncMock()

        await write_frame(writer, HELLO_REQUEST_TAG, b"abc")

        writer.write.assert_called_once_with(b"\x00\x03\x01abc")
        writer.drain.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_drain_failure_is_transport_error(self) -> None:
        writer = MagicMock()
        writer.drain = AsyncMock(side_effect=BrokenPipeError("pipe"))

        err = await expect_async_exception(write_frame, TransportError, writer, PING_REQUEST_TAG, b"")

        assert err.reason.startswith("write_failed")


class TestPlaintextFrameCodec:
    """Tests for the codec object used by the frame channel."""

    def test_encode_matches_function(self) -> None:
        codec = PlaintextFrameCodec()
        assert codec.encode(LARGE_TAG, PAYLOAD_200) == encode_frame(LARGE_TAG, PAYLOAD_200)

    @pytest.mark.asyncio
    async def test_read_uses_configured_limit(self) -> None:
        codec = PlaintextFrameCodec(max_frame_size=SMALL_MAX_FRAME)
        reader = reader_with(encode_frame(HELLO_REQUEST_TAG, bytes(SMALL_MAX_FRAME + 1)))
        await expect_async_exception(codec.read_frame, FrameTooLargeError, reader)

    def test_repr(self) -> None:
        assert "max_frame_size=64" in repr(PlaintextFrameCodec(SMALL_MAX_FRAME))

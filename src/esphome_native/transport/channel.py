"""Frame channel: a stream endpoint plus the codec that frames it.

The channel is codec agnostic (plaintext or Noise) and owns the writer lock,
so every frame leaves the socket whole even when several tasks send at once.
"""

from __future__ import annotations

import asyncio
import logging

from esphome_native.metrics import registry
from esphome_native.protocol.exceptions import TransportError
from esphome_native.protocol.frame_codec import Frame, FrameCodec
from esphome_native.protocol.message_types import describe_type
from esphome_native.transport.types import StreamEndpoint

logger = logging.getLogger(__name__)


class FrameChannel:
    def __init__(self, endpoint: StreamEndpoint, codec: FrameCodec, device: str = "unknown") -> None:
        self.endpoint = endpoint
        self.codec = codec
        self.device = device
        self._write_lock = asyncio.Lock()
        self._closed = False

    @property
    def encrypted(self) -> bool:
        from esphome_native.transport.noise import NoiseFrameCodec  # noqa: PLC0415

        return isinstance(self.codec, NoiseFrameCodec)

    @property
    def closed(self) -> bool:
        return self._closed

    async def write_frame(self, type_tag: int, payload: bytes) -> None:
        """Encode and write one frame under the writer lock.

        Raises:
            TransportError: Write or drain failed
        """
        async with self._write_lock:
            data = self.codec.encode(type_tag, payload)
            try:
                self.endpoint.writer.write(data)
                await self.endpoint.writer.drain()
            except OSError as err:
                raise TransportError(f"write_failed: {err}") from err

        registry.record_frame_sent(self.device, describe_type(type_tag))
        logger.debug(
            "→ Sent %s (%d bytes)",
            describe_type(type_tag),
            len(payload),
            extra={"device": self.device, "type": describe_type(type_tag), "bytes": len(payload)},
        )

    async def read_frame(self) -> Frame:
        frame = await self.codec.read_frame(self.endpoint.reader)
        registry.record_frame_received(self.device, describe_type(frame.type_tag))
        logger.debug(
            "← Received %s (%d bytes)",
            describe_type(frame.type_tag),
            len(frame.payload),
            extra={"device": self.device, "type": describe_type(frame.type_tag), "bytes": len(frame.payload)},
        )
        return frame

    async def close(self) -> None:
        """Close the underlying writer; only used after fatal errors."""
        if self._closed:
            return
        self._closed = True
        writer = self.endpoint.writer
        try:
            writer.close()
            await writer.wait_closed()
        except (OSError, ConnectionError) as err:
            logger.warning(
                "Error closing stream to %s: %s",
                self.device,
                err,
                extra={"device": self.device, "error": str(err), "error_type": type(err).__name__},
            )

    def __repr__(self) -> str:
        return f"FrameChannel(device={self.device!r}, codec={self.codec!r}, closed={self._closed})"

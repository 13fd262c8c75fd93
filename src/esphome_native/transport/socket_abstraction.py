"""Asyncio TCP dialer producing a ``StreamEndpoint`` for ``connect``."""

import asyncio
import logging
import time

from esphome_native.const import DEFAULT_API_PORT
from esphome_native.instrumentation import measure_time
from esphome_native.transport.exceptions import InvalidStateError
from esphome_native.transport.retry_policy import RetryPolicy
from esphome_native.transport.types import StreamEndpoint

logger = logging.getLogger(__name__)


class TCPConnection:
    """Dials a device's API port and owns the resulting stream.

    ``connect`` and the session never close a healthy stream for the caller;
    whoever dialed it closes it, and this class is that owner.
    """

    def __init__(self, host: str, port: int = DEFAULT_API_PORT, connect_timeout: float = 5.0):
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.reader: asyncio.StreamReader | None = None
        self.writer: asyncio.StreamWriter | None = None

    @property
    def peer(self) -> str:
        return f"{self.host}:{self.port}"

    @property
    def is_connected(self) -> bool:
        return self.writer is not None

    async def connect(self) -> bool:
        """Open the socket within ``connect_timeout``.

        Returns:
            True on success; failures are logged and reported as False
        """
        context: dict[str, object] = {"host": self.host, "port": self.port}
        logger.info("→ Dialing %s (timeout: %.1fs)", self.peer, self.connect_timeout, extra=context)
        started = time.perf_counter()
        try:
            async with asyncio.timeout(self.connect_timeout):
                reader, writer = await asyncio.open_connection(self.host, self.port)
        except (TimeoutError, OSError) as e:
            error = "timeout" if isinstance(e, TimeoutError) else str(e)
            logger.warning(
                "✗ Dial %s failed after %.1fms: %s",
                self.peer,
                measure_time(started),
                error,
                extra={**context, "error": error},
            )
            return False

        self.reader, self.writer = reader, writer
        logger.info("✓ Dialed %s in %.1fms", self.peer, measure_time(started), extra=context)
        return True

    async def connect_with_retry(self, retry_policy: RetryPolicy) -> bool:
        """Dial until connected or ``retry_policy`` runs out of attempts."""
        attempt = 0
        while not await self.connect():
            if not retry_policy.should_retry(attempt):
                logger.error(
                    "✗ Giving up on %s after %d attempts",
                    self.peer,
                    attempt + 1,
                    extra={"host": self.host, "port": self.port, "attempts": attempt + 1},
                )
                return False
            delay = retry_policy.get_delay(attempt)
            attempt += 1
            logger.info("Redialing %s in %.2fs (attempt %d)", self.peer, delay, attempt + 1)
            await asyncio.sleep(delay)
        return True

    @property
    def endpoint(self) -> StreamEndpoint:
        if self.reader is None or self.writer is None:
            raise InvalidStateError("endpoint", "disconnected")
        return StreamEndpoint(reader=self.reader, writer=self.writer)

    async def close(self) -> None:
        writer, self.reader, self.writer = self.writer, None, None
        if writer is None:
            return
        logger.info("Closing connection to %s", self.peer, extra={"host": self.host, "port": self.port})
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ConnectionError) as e:
            logger.warning(
                "Error while closing %s: %s",
                self.peer,
                e,
                extra={"host": self.host, "port": self.port, "error_type": type(e).__name__},
            )

    def __repr__(self) -> str:
        return f"TCPConnection({self.peer}, {'connected' if self.is_connected else 'disconnected'})"

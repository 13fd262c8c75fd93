"""Established native API session.

A single read loop owns the read half of the stream and classifies every
frame, in order:

1. housekeeping the session answers itself (ping, time, disconnect)
2. reply to a pending ``request`` (matched by response type)
3. entity listing in progress (``list_entities`` collector)
4. unsolicited: handed to the sink, or buffered until one is registered

Sink delivery happens inline, so a message that arrives before a reply is
always seen by the sink before the matching ``request`` returns.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import Any

from esphome_native.correlation import correlation_context, ensure_correlation_id
from esphome_native.logging_abstraction import get_logger
from esphome_native.metrics import registry
from esphome_native.protocol.catalogue import DefaultCatalogue, MessageCatalogue
from esphome_native.protocol.exceptions import (
    CatalogueError,
    EspHomeApiError,
    MalformedFrameError,
    TransportError,
)
from esphome_native.protocol.frame_codec import Frame
from esphome_native.protocol.message_types import MessageType, describe_type
from esphome_native.protocol.messages import (
    LIST_ENTITIES_RESPONSE_TYPES,
    DeviceInfoRequest,
    DeviceInfoResponse,
    DisconnectRequest,
    GetTimeRequest,
    GetTimeResponse,
    ListEntitiesRequest,
    PingRequest,
    PingResponse,
    SubscribeStatesRequest,
)
from esphome_native.transport.channel import FrameChannel
from esphome_native.transport.exceptions import (
    ConnectionClosedError,
    RequestPendingError,
    RequestTimeoutError,
)
from esphome_native.transport.pending import PendingRequestTable
from esphome_native.transport.retry_policy import TimeoutConfig
from esphome_native.transport.types import (
    Authenticated,
    Closed,
    Connected,
    DeviceInfoSnapshot,
    SessionPhase,
    SessionState,
)

logger = get_logger(__name__)

Sink = Callable[[Any], Awaitable[None] | None]


class Session:
    """Running session over an authenticated (or open) channel.

    Created by ``ConnectedDevice.authenticate`` / ``start_session``. Use it
    as an async context manager to close it on exit.
    """

    def __init__(
        self,
        channel: FrameChannel,
        device_info: DeviceInfoSnapshot,
        *,
        catalogue: MessageCatalogue | None = None,
        timeout_config: TimeoutConfig | None = None,
        authenticated: bool = False,
    ) -> None:
        self._channel = channel
        self._device_info = device_info
        self._catalogue = catalogue or DefaultCatalogue()
        self._config = timeout_config or TimeoutConfig()
        self._phase: SessionPhase = (
            Authenticated(channel, device_info) if authenticated else Connected(channel, device_info)
        )
        self._pending = PendingRequestTable()
        self._backlog: asyncio.Queue[Any] = asyncio.Queue(maxsize=self._config.unsolicited_queue_size)
        self._sink: Sink | None = None
        self._collector: Callable[[int, Any], bool] | None = None
        self._delivery_lock = asyncio.Lock()
        self._closed_event = asyncio.Event()
        self._read_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._flush_tasks: set[asyncio.Task[None]] = set()

    @property
    def device(self) -> str:
        return self._channel.device

    @property
    def device_info(self) -> DeviceInfoSnapshot:
        return self._device_info

    @property
    def state(self) -> SessionState:
        return self._phase.state

    @property
    def is_closed(self) -> bool:
        return isinstance(self._phase, Closed)

    @property
    def close_reason(self) -> str | None:
        return self._phase.reason if isinstance(self._phase, Closed) else None

    @property
    def pending_tags(self) -> frozenset[int]:
        return self._pending.tags

    def start(self) -> None:
        """Start the read loop (and keepalive when configured). Idempotent."""
        if self._read_task is not None or self.is_closed:
            return
        registry.record_session_state(self.device, self.state.value)
        self._read_task = asyncio.create_task(self._read_loop(), name=f"esphome-native-read-{self.device}")
        if self._config.keepalive_enabled:
            self._keepalive_task = asyncio.create_task(
                self._keepalive_loop(),
                name=f"esphome-native-keepalive-{self.device}",
            )

    def _ensure_open(self, operation: str) -> None:
        if isinstance(self._phase, Closed):
            logger.debug(
                "Refusing %s on closed session",
                operation,
                extra={"device": self.device, "reason": self._phase.reason},
            )
            raise ConnectionClosedError(self._phase.reason, self._phase.state.value)

    # Write path

    async def _write(self, type_tag: int, payload: bytes) -> None:
        try:
            await self._channel.write_frame(type_tag, payload)
        except TransportError as err:
            await self._shutdown("transport_error", err, close_stream=True)
            raise

    async def send(self, message: Any) -> None:
        """Encode and write ``message`` without waiting for any reply.

        Raises:
            ConnectionClosedError: Session already closed
            CatalogueError: Message cannot be encoded
            TransportError: Write failed (session closes)
        """
        self._ensure_open("send")
        type_tag, payload = self._catalogue.encode(message)
        await self._write(type_tag, payload)

    async def request(
        self,
        message: Any,
        expected_response_tag: int,
        timeout: float | None = None,
    ) -> Any:
        """Send ``message`` and wait for the next frame of ``expected_response_tag``.

        Replies carry no request id, so only one request per response type may
        be outstanding; a second one fails with ``RequestPendingError`` instead
        of racing for the same reply.

        Args:
            message: Message record to send
            expected_response_tag: Type tag of the reply
            timeout: Seconds to wait (default: ``request_timeout_seconds``)

        Raises:
            RequestPendingError: Same response type already awaited
            RequestTimeoutError: Deadline passed; the session stays open
            ConnectionClosedError: Session closed before or while waiting
            TransportError / MalformedFrameError: Fatal error while waiting
        """
        self._ensure_open("request")
        expected_tag = int(expected_response_tag)
        wait_seconds = self._config.request_timeout_seconds if timeout is None else timeout

        with correlation_context() as correlation_id:
            entry = self._pending.register(expected_tag, correlation_id or "")
            try:
                type_tag, payload = self._catalogue.encode(message)
                logger.debug(
                    "→ Request %s awaiting %s",
                    describe_type(type_tag),
                    describe_type(expected_tag),
                    extra={"device": self.device, "timeout": wait_seconds},
                )
                await self._write(type_tag, payload)
                try:
                    reply = await asyncio.wait_for(entry.future, timeout=wait_seconds)
                except TimeoutError as err:
                    registry.record_request_timeout(self.device, describe_type(expected_tag))
                    logger.warning(
                        "✗ No %s within %.3fs",
                        describe_type(expected_tag),
                        wait_seconds,
                        extra={"device": self.device, "expected": describe_type(expected_tag)},
                    )
                    raise RequestTimeoutError(expected_tag, wait_seconds, correlation_id or "") from err
            finally:
                self._pending.discard(entry)
                entry.release()

            latency = time.perf_counter() - entry.sent_at
            registry.record_request_latency(self.device, describe_type(expected_tag), latency)
            logger.debug(
                "✓ %s received in %.1fms",
                describe_type(expected_tag),
                latency * 1000,
                extra={"device": self.device},
            )
            return reply

    # Unsolicited delivery

    def register_sink(self, sink: Sink | None) -> None:
        """Route unsolicited messages to ``sink`` (None buffers them again).

        Buffered messages are delivered first, in arrival order. The sink runs
        inside the read loop, so it must not await ``request`` on this session;
        schedule a task for that instead.
        """
        self._sink = sink
        if sink is None or self._backlog.empty() or self.is_closed:
            return
        flush = asyncio.create_task(self._flush_backlog(), name=f"esphome-native-flush-{self.device}")
        self._flush_tasks.add(flush)
        flush.add_done_callback(self._flush_tasks.discard)

    async def next_unsolicited(self, timeout: float | None = None) -> Any | None:
        """Pop the oldest buffered unsolicited message.

        Returns None when ``timeout`` passes with nothing buffered.

        Raises:
            ConnectionClosedError: Session closed and nothing left to read
        """
        if not self._backlog.empty():
            return self._backlog.get_nowait()
        self._ensure_open("next_unsolicited")

        getter = asyncio.ensure_future(self._backlog.get())
        closer = asyncio.ensure_future(self._closed_event.wait())
        try:
            done, _ = await asyncio.wait({getter, closer}, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in (getter, closer):
                if not waiter.done():
                    waiter.cancel()

        if getter in done:
            return getter.result()
        if closer in done:
            self._ensure_open("next_unsolicited")
        return None

    def _enqueue(self, message: Any) -> None:
        if self._backlog.full():
            dropped = self._backlog.get_nowait()
            registry.record_unsolicited(self.device, "dropped")
            logger.warning(
                "Unsolicited backlog full (%d), dropping oldest %s",
                self._backlog.maxsize,
                type(dropped).__name__,
                extra={"device": self.device},
            )
        self._backlog.put_nowait(message)
        registry.record_unsolicited(self.device, "buffered")

    async def _invoke_sink(self, sink: Sink, message: Any) -> None:
        try:
            result = sink(message)
            if inspect.isawaitable(result):
                await result
        except Exception:
            registry.record_unsolicited(self.device, "sink_error")
            logger.exception(
                "✗ Unsolicited sink failed on %s",
                type(message).__name__,
                extra={"device": self.device},
            )
        else:
            registry.record_unsolicited(self.device, "delivered")

    async def _drain_backlog(self, sink: Sink) -> None:
        while not self._backlog.empty():
            await self._invoke_sink(sink, self._backlog.get_nowait())

    async def _flush_backlog(self) -> None:
        async with self._delivery_lock:
            while self._sink is not None and not self._backlog.empty():
                await self._invoke_sink(self._sink, self._backlog.get_nowait())

    async def _deliver_unsolicited(self, message: Any) -> None:
        async with self._delivery_lock:
            sink = self._sink
            if sink is None:
                self._enqueue(message)
                return
            await self._drain_backlog(sink)
            await self._invoke_sink(sink, message)

    # Read loop

    async def _answer_housekeeping(self, frame: Frame) -> bool:
        if frame.type_tag == MessageType.PING_REQUEST:
            logger.debug("← Ping from device, answering", extra={"device": self.device})
            await self._write(MessageType.PING_RESPONSE, b"")
            return True
        if frame.type_tag == MessageType.GET_TIME_REQUEST:
            reply = GetTimeResponse(epoch_seconds=int(time.time()))
            logger.debug("← Time request from device", extra={"device": self.device, "epoch": reply.epoch_seconds})
            await self._write(MessageType.GET_TIME_RESPONSE, reply.SerializeToString())
            return True
        if frame.type_tag == MessageType.DISCONNECT_REQUEST:
            logger.info("← Device %s requested disconnect", self.device, extra={"device": self.device})
            await self._write(MessageType.DISCONNECT_RESPONSE, b"")
            await self._shutdown("device_disconnect", close_stream=True)
            return True
        return False

    async def _dispatch(self, frame: Frame) -> None:
        if await self._answer_housekeeping(frame):
            return

        message = self._catalogue.decode(frame.type_tag, frame.payload)
        if self._pending.resolve(frame.type_tag, message) is not None:
            return
        if self._collector is not None and self._collector(frame.type_tag, message):
            return
        await self._deliver_unsolicited(message)

    async def _read_loop(self) -> None:
        ensure_correlation_id()
        try:
            while not self.is_closed:
                frame = await self._channel.read_frame()
                await self._dispatch(frame)
        except (MalformedFrameError, CatalogueError) as err:
            if self.is_closed:
                return
            registry.record_decode_error(self.device, type(err).__name__)
            logger.exception("✗ Undecodable frame from %s, closing session", self.device, extra={"device": self.device})
            await self._shutdown("malformed_frame", err, close_stream=True)
        except EspHomeApiError as err:
            if self.is_closed:
                return
            logger.exception("✗ Read loop for %s failed, closing session", self.device, extra={"device": self.device})
            await self._shutdown("transport_error", err, close_stream=True)
        except Exception as err:
            if self.is_closed:
                return
            logger.exception(
                "✗ Unexpected %s in read loop for %s, closing session",
                type(err).__name__,
                self.device,
                extra={"device": self.device},
            )
            await self._shutdown("internal_error", err, close_stream=True)

    async def _keepalive_loop(self) -> None:
        interval = self._config.keepalive_interval_seconds
        while not self.is_closed:
            await asyncio.sleep(interval)
            if self.is_closed:
                return
            try:
                await self.ping(timeout=self._config.keepalive_timeout_seconds)
            except RequestPendingError:
                logger.debug("Keepalive skipped, ping already in flight", extra={"device": self.device})
                continue
            except RequestTimeoutError as err:
                registry.record_keepalive(self.device, "timeout")
                error = TransportError("keepalive_timeout")
                error.__cause__ = err
                logger.error(
                    "✗ Keepalive to %s timed out after %.1fs, closing session",
                    self.device,
                    self._config.keepalive_timeout_seconds,
                    extra={"device": self.device},
                )
                await self._shutdown("keepalive_timeout", error, close_stream=True)
                return
            except EspHomeApiError:
                if self.is_closed:
                    return
                raise
            registry.record_keepalive(self.device, "success")

    # Shutdown

    async def _shutdown(
        self,
        reason: str,
        error: BaseException | None = None,
        *,
        close_stream: bool = False,
    ) -> None:
        if self.is_closed:
            return
        self._phase = Closed(reason, error)
        self._closed_event.set()
        registry.record_session_state(self.device, SessionState.CLOSED.value)

        failed = self._pending.fail_all(error if error is not None else ConnectionClosedError(reason))

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._read_task, self._keepalive_task, *self._flush_tasks)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

        if close_stream:
            await self._channel.close()

        logger.info(
            "Session with %s closed: %s",
            self.device,
            reason,
            extra={"device": self.device, "reason": reason, "failed_requests": failed},
        )

    async def close(self) -> None:
        """Close the session. Idempotent; the stream itself is left to its owner.

        Pending requests fail with ``ConnectionClosedError``.
        """
        await self._shutdown("closed_by_caller")

    async def __aenter__(self) -> Session:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    # Convenience operations

    async def ping(self, timeout: float | None = None) -> PingResponse:
        return await self.request(PingRequest(), MessageType.PING_RESPONSE, timeout)

    async def get_time(self, timeout: float | None = None) -> GetTimeResponse:
        return await self.request(GetTimeRequest(), MessageType.GET_TIME_RESPONSE, timeout)

    async def query_device_info(self, timeout: float | None = None) -> DeviceInfoResponse:
        return await self.request(DeviceInfoRequest(), MessageType.DEVICE_INFO_RESPONSE, timeout)

    async def list_entities(self, timeout: float | None = None) -> list[Any]:
        """Request the entity list and collect it until ListEntitiesDoneResponse.

        Entity descriptions go to the returned list, not to the sink.
        """
        self._ensure_open("list_entities")
        if self._collector is not None:
            raise RequestPendingError(MessageType.LIST_ENTITIES_DONE_RESPONSE)

        entities: list[Any] = []

        def collect(type_tag: int, message: Any) -> bool:
            if type_tag in LIST_ENTITIES_RESPONSE_TYPES:
                entities.append(message)
                return True
            return False

        self._collector = collect
        try:
            await self.request(ListEntitiesRequest(), MessageType.LIST_ENTITIES_DONE_RESPONSE, timeout)
        finally:
            self._collector = None
        return entities

    async def subscribe_states(self) -> None:
        """Ask the device to push state updates; they arrive as unsolicited messages."""
        await self.send(SubscribeStatesRequest())

    async def disconnect(self, timeout: float | None = None) -> None:
        """Say goodbye to the device, then close the session."""
        try:
            await self.request(DisconnectRequest(), MessageType.DISCONNECT_RESPONSE, timeout)
        finally:
            await self.close()

    def __repr__(self) -> str:
        return f"Session(device={self.device!r}, state={self.state.value}, pending={len(self._pending)})"

"""Connection handshake and login.

``connect`` drives a fresh stream from ``Unconnected`` to ``Connected``::

    HelloRequest       ->
                       <- HelloResponse       (API major must match)
    DeviceInfoRequest  ->
                       <- DeviceInfoResponse  (uses_password -> auth_required)

The returned ``ConnectedDevice`` only allows ``authenticate`` (password
devices) or ``start_session`` (open devices). Either one consumes the handle
and hands back a running ``Session``.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from esphome_native.instrumentation import timed_async
from esphome_native.logging_abstraction import get_logger
from esphome_native.metrics import registry
from esphome_native.protocol.catalogue import DefaultCatalogue, MessageCatalogue
from esphome_native.protocol.exceptions import (
    CatalogueError,
    EspHomeApiError,
    MalformedFrameError,
    TransportError,
)
from esphome_native.protocol.frame_codec import FrameCodec, PlaintextFrameCodec
from esphome_native.protocol.message_types import MessageType, describe_type
from esphome_native.protocol.messages import (
    ConnectRequest,
    ConnectResponse,
    DeviceInfoRequest,
    DeviceInfoResponse,
    GetTimeResponse,
    HelloRequest,
    HelloResponse,
)
from esphome_native.transport.channel import FrameChannel
from esphome_native.transport.exceptions import (
    AuthenticationNotRequiredError,
    AuthenticationRejectedError,
    AuthenticationRequiredError,
    ConnectionClosedError,
    HandshakeFailedError,
    InvalidStateError,
    UnexpectedMessageError,
)
from esphome_native.transport.noise import perform_noise_handshake
from esphome_native.transport.retry_policy import TimeoutConfig
from esphome_native.transport.session import Session
from esphome_native.transport.types import (
    AwaitingHelloResponse,
    ClientInfo,
    Closed,
    Connected,
    DeviceInfoSnapshot,
    SessionPhase,
    SessionState,
    StreamEndpoint,
    Unconnected,
)

logger = get_logger(__name__)


async def _send_message(channel: FrameChannel, catalogue: MessageCatalogue, message: Any) -> None:
    type_tag, payload = catalogue.encode(message)
    await channel.write_frame(type_tag, payload)


async def _expect_message(
    channel: FrameChannel,
    catalogue: MessageCatalogue,
    expected: MessageType,
) -> Any:
    frame = await channel.read_frame()
    if frame.type_tag != expected:
        raise UnexpectedMessageError(expected, frame.type_tag)
    return catalogue.decode(frame.type_tag, frame.payload)


async def _close_writer(endpoint: StreamEndpoint) -> None:
    try:
        endpoint.writer.close()
        await endpoint.writer.wait_closed()
    except (OSError, ConnectionError) as err:
        logger.warning(
            "Error closing stream after failed handshake: %s",
            err,
            extra={"peer": endpoint.peer, "error": str(err)},
        )


async def _exchange_hello(
    endpoint: StreamEndpoint,
    client_info: ClientInfo,
    catalogue: MessageCatalogue,
    noise_psk: str | None,
    expected_name: str | None,
    config: TimeoutConfig,
) -> tuple[FrameChannel, DeviceInfoSnapshot]:
    codec: FrameCodec
    if noise_psk is not None:
        codec, _server_hello = await perform_noise_handshake(
            endpoint,
            noise_psk,
            expected_name=expected_name,
            max_frame_size=config.max_frame_size,
        )
    else:
        codec = PlaintextFrameCodec(config.max_frame_size)

    channel = FrameChannel(endpoint, codec, device=expected_name or endpoint.peer)
    await _send_message(
        channel,
        catalogue,
        HelloRequest(
            client_info=client_info.name,
            api_version_major=client_info.api_version.major,
            api_version_minor=client_info.api_version.minor,
        ),
    )
    phase: SessionPhase = AwaitingHelloResponse(channel)
    registry.record_session_state(channel.device, phase.state.value)

    hello: HelloResponse = await _expect_message(channel, catalogue, MessageType.HELLO_RESPONSE)
    if hello.api_version_major != client_info.api_version.major:
        logger.warning(
            "✗ Incompatible API version %d.%d (client speaks %s)",
            hello.api_version_major,
            hello.api_version_minor,
            client_info.api_version,
            extra={"peer": endpoint.peer, "server_info": hello.server_info},
        )
        raise HandshakeFailedError("incompatible_api_version")

    await _send_message(channel, catalogue, DeviceInfoRequest())
    info: DeviceInfoResponse = await _expect_message(channel, catalogue, MessageType.DEVICE_INFO_RESPONSE)

    snapshot = DeviceInfoSnapshot.from_responses(hello, info, encrypted=noise_psk is not None)
    if snapshot.name:
        channel.device = snapshot.name
    return channel, snapshot


@timed_async("connect")
async def connect(
    endpoint: StreamEndpoint,
    client_info: ClientInfo | None = None,
    *,
    catalogue: MessageCatalogue | None = None,
    noise_psk: str | None = None,
    expected_name: str | None = None,
    timeout_config: TimeoutConfig | None = None,
) -> ConnectedDevice:
    """Run the handshake on a freshly opened stream.

    Args:
        endpoint: Reader/writer pair, already connected
        client_info: Name and API version to announce
        catalogue: Message catalogue (defaults to ``DefaultCatalogue()``)
        noise_psk: Base64 encryption key; selects the encrypted transport
        expected_name: Device name the encrypted handshake must report
        timeout_config: Deadlines and limits

    Returns:
        Handle in the ``Connected`` state

    Raises:
        HandshakeFailedError: I/O failure, deadline, or incompatible API version
        UnexpectedMessageError: Device answered with the wrong message type
        MalformedFrameError: Device sent bytes that are not a valid frame
        EncryptionRequiredError: Device only speaks the encrypted transport
        EncryptionHandshakeError: Encrypted handshake refused
        UnsupportedFeatureError: Device does not offer the encrypted transport

    Every failure closes the stream; nothing is retried.
    """
    client_info = client_info or ClientInfo()
    catalogue = catalogue or DefaultCatalogue()
    config = timeout_config or TimeoutConfig()
    phase: SessionPhase = Unconnected(endpoint)
    device_label = expected_name or endpoint.peer
    registry.record_session_state(device_label, phase.state.value)

    logger.info(
        "→ Connecting to %s (encrypted: %s)",
        endpoint.peer,
        noise_psk is not None,
        extra={"peer": endpoint.peer, "client_info": client_info.name, "api_version": str(client_info.api_version)},
    )
    try:
        async with asyncio.timeout(config.handshake_timeout_seconds):
            channel, snapshot = await _exchange_hello(
                endpoint,
                client_info,
                catalogue,
                noise_psk,
                expected_name,
                config,
            )
    except (TransportError, OSError, TimeoutError) as err:
        reason = "handshake_timeout" if isinstance(err, TimeoutError) else getattr(err, "reason", str(err))
        logger.warning(
            "✗ Handshake with %s failed: %s",
            endpoint.peer,
            reason,
            extra={"peer": endpoint.peer, "error": str(err), "error_type": type(err).__name__},
        )
        registry.record_handshake(device_label, "failure")
        registry.record_session_state(device_label, SessionState.CLOSED.value)
        await _close_writer(endpoint)
        raise HandshakeFailedError(reason) from err
    except EspHomeApiError as err:
        logger.warning(
            "✗ Handshake with %s rejected: %s",
            endpoint.peer,
            err,
            extra={"peer": endpoint.peer, "error_type": type(err).__name__},
        )
        registry.record_handshake(device_label, "failure")
        registry.record_session_state(device_label, SessionState.CLOSED.value)
        await _close_writer(endpoint)
        raise

    registry.record_handshake(channel.device, "success")
    device = ConnectedDevice(channel, snapshot, catalogue=catalogue, timeout_config=config)
    logger.info(
        "✓ Connected to %s (%s, API %s, auth required: %s)",
        snapshot.name or endpoint.peer,
        snapshot.server_info,
        snapshot.api_version,
        snapshot.auth_required,
        extra={"peer": endpoint.peer, "device": snapshot.name, "esphome_version": snapshot.esphome_version},
    )
    return device


class ConnectedDevice:
    """Handle for a device that finished the handshake but has no session yet."""

    def __init__(
        self,
        channel: FrameChannel,
        device_info: DeviceInfoSnapshot,
        *,
        catalogue: MessageCatalogue,
        timeout_config: TimeoutConfig,
    ) -> None:
        self._phase: SessionPhase = Connected(channel, device_info)
        self._device_info = device_info
        self._catalogue = catalogue
        self._config = timeout_config
        self._auth_lock = asyncio.Lock()
        self._promoted = False
        registry.record_session_state(channel.device, SessionState.CONNECTED.value)

    @property
    def device_info(self) -> DeviceInfoSnapshot:
        return self._device_info

    @property
    def state(self) -> SessionState:
        return self._phase.state

    def _require_connected(self, operation: str) -> Connected:
        if self._promoted:
            raise InvalidStateError(operation, "promoted")
        if isinstance(self._phase, Closed):
            raise ConnectionClosedError(self._phase.reason, self._phase.state.value)
        if not isinstance(self._phase, Connected):
            raise InvalidStateError(operation, self._phase.state.value)
        return self._phase

    @timed_async("authenticate")
    async def authenticate(self, password: str) -> Session:
        """Log in with ``password`` and start the session.

        Raises:
            AuthenticationNotRequiredError: Device reported no password
            AuthenticationRejectedError: Wrong password; handle stays usable
            UnexpectedMessageError: Device answered with another type (closes)
            TransportError: Stream failed or login deadline passed (closes)
        """
        self._require_connected("authenticate")
        if not self._device_info.auth_required:
            raise AuthenticationNotRequiredError
        return await self._login(password, authenticated=True)

    async def start_session(self) -> Session:
        """Start the session on a device without a password.

        Sends the login message with an empty password; the session state
        stays ``Connected``.

        Raises:
            AuthenticationRequiredError: Device requires ``authenticate``
        """
        self._require_connected("start_session")
        if self._device_info.auth_required:
            raise AuthenticationRequiredError
        return await self._login("", authenticated=False)

    async def close(self) -> None:
        """Abandon the handle without starting a session (stream left open)."""
        if isinstance(self._phase, Closed) or self._promoted:
            return
        device = self._phase.channel.device if isinstance(self._phase, Connected) else "unknown"
        self._phase = Closed("closed_by_caller")
        registry.record_session_state(device, SessionState.CLOSED.value)

    async def _abort(self, channel: FrameChannel, reason: str, error: BaseException) -> None:
        self._phase = Closed(reason, error)
        registry.record_session_state(channel.device, SessionState.CLOSED.value)
        await channel.close()

    async def _read_login_reply(self, channel: FrameChannel) -> ConnectResponse:
        while True:
            frame = await channel.read_frame()
            if frame.type_tag == MessageType.PING_REQUEST:
                await channel.write_frame(MessageType.PING_RESPONSE, b"")
                continue
            if frame.type_tag == MessageType.GET_TIME_REQUEST:
                reply = GetTimeResponse(epoch_seconds=int(time.time()))
                await channel.write_frame(MessageType.GET_TIME_RESPONSE, reply.SerializeToString())
                continue
            if frame.type_tag != MessageType.CONNECT_RESPONSE:
                raise UnexpectedMessageError(MessageType.CONNECT_RESPONSE, frame.type_tag)
            return self._catalogue.decode(frame.type_tag, frame.payload)

    async def _login(self, password: str, *, authenticated: bool) -> Session:
        async with self._auth_lock:
            phase = self._require_connected("authenticate" if authenticated else "start_session")
            channel = phase.channel
            logger.debug("→ Sending login request", extra={"device": channel.device, "with_password": bool(password)})

            try:
                async with asyncio.timeout(self._config.auth_timeout_seconds):
                    await _send_message(channel, self._catalogue, ConnectRequest(password=password))
                    response = await self._read_login_reply(channel)
            except TimeoutError as err:
                error = TransportError("auth_timeout")
                registry.record_authentication(channel.device, "timeout")
                await self._abort(channel, "auth_timeout", error)
                raise error from err
            except UnexpectedMessageError as err:
                logger.warning(
                    "✗ Unexpected %s while waiting for login reply",
                    describe_type(err.received),
                    extra={"device": channel.device},
                )
                registry.record_authentication(channel.device, "failure")
                await self._abort(channel, "unexpected_message", err)
                raise
            except (TransportError, MalformedFrameError, CatalogueError) as err:
                registry.record_authentication(channel.device, "failure")
                await self._abort(channel, "transport_error", err)
                raise

            if response.invalid_password:
                registry.record_authentication(channel.device, "rejected")
                logger.warning("✗ Device %s rejected the password", channel.device, extra={"device": channel.device})
                raise AuthenticationRejectedError

            self._promoted = True
            registry.record_authentication(channel.device, "success" if authenticated else "not_required")
            session = Session(
                channel,
                self._device_info,
                catalogue=self._catalogue,
                timeout_config=self._config,
                authenticated=authenticated,
            )
            session.start()
            logger.info(
                "✓ Session started with %s (%s)",
                channel.device,
                session.state.value,
                extra={"device": channel.device, "state": session.state.value},
            )
            return session

    def __repr__(self) -> str:
        return f"ConnectedDevice(device={self._device_info.name!r}, state={self.state.value})"

"""Core dataclasses for the connection and session layer.

The session state is a tagged union: each variant carries exactly the data
that is valid in that state, so handshake-only fields cannot leak into an
established session.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, ClassVar

from esphome_native.const import (
    CLIENT_API_VERSION_MAJOR,
    CLIENT_API_VERSION_MINOR,
    ESPHOME_NATIVE_CLIENT_INFO,
)

if TYPE_CHECKING:
    from esphome_native.protocol.messages import DeviceInfoResponse, HelloResponse
    from esphome_native.transport.channel import FrameChannel


class SessionState(Enum):
    """Session state names used for logging and metrics."""

    UNCONNECTED = "unconnected"
    AWAITING_HELLO_RESPONSE = "awaiting_hello_response"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    CLOSED = "closed"


@dataclass(frozen=True)
class StreamEndpoint:
    """Caller-supplied duplex byte stream.

    The core closes the writer only after a fatal protocol error.
    """

    reader: asyncio.StreamReader
    writer: asyncio.StreamWriter

    @property
    def peer(self) -> str:
        peername = self.writer.get_extra_info("peername")
        if isinstance(peername, tuple) and len(peername) >= 2:
            return f"{peername[0]}:{peername[1]}"
        return "unknown"


@dataclass(frozen=True, order=True)
class APIVersion:
    major: int
    minor: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


@dataclass(frozen=True)
class ClientInfo:
    """Identity the client presents in HelloRequest."""

    name: str = ESPHOME_NATIVE_CLIENT_INFO
    api_version: APIVersion = field(
        default_factory=lambda: APIVersion(CLIENT_API_VERSION_MAJOR, CLIENT_API_VERSION_MINOR),
    )


@dataclass(frozen=True)
class DeviceInfoSnapshot:
    """Immutable view of the device built once at the end of the handshake."""

    name: str
    server_info: str
    api_version: APIVersion
    auth_required: bool
    mac_address: str = ""
    esphome_version: str = ""
    compilation_time: str = ""
    model: str = ""
    manufacturer: str = ""
    friendly_name: str = ""
    project_name: str = ""
    project_version: str = ""
    has_deep_sleep: bool = False
    webserver_port: int = 0
    encrypted: bool = False

    @classmethod
    def from_responses(
        cls,
        hello: HelloResponse,
        info: DeviceInfoResponse,
        *,
        encrypted: bool = False,
    ) -> DeviceInfoSnapshot:
        return cls(
            name=info.name or hello.name,
            server_info=hello.server_info,
            api_version=APIVersion(hello.api_version_major, hello.api_version_minor),
            auth_required=info.uses_password,
            mac_address=info.mac_address,
            esphome_version=info.esphome_version,
            compilation_time=info.compilation_time,
            model=info.model,
            manufacturer=info.manufacturer,
            friendly_name=info.friendly_name,
            project_name=info.project_name,
            project_version=info.project_version,
            has_deep_sleep=info.has_deep_sleep,
            webserver_port=info.webserver_port,
            encrypted=encrypted,
        )


@dataclass(frozen=True)
class Unconnected:
    state: ClassVar[SessionState] = SessionState.UNCONNECTED
    endpoint: StreamEndpoint


@dataclass(frozen=True)
class AwaitingHelloResponse:
    state: ClassVar[SessionState] = SessionState.AWAITING_HELLO_RESPONSE
    channel: FrameChannel


@dataclass(frozen=True)
class Connected:
    state: ClassVar[SessionState] = SessionState.CONNECTED
    channel: FrameChannel
    device_info: DeviceInfoSnapshot


@dataclass(frozen=True)
class Authenticated:
    state: ClassVar[SessionState] = SessionState.AUTHENTICATED
    channel: FrameChannel
    device_info: DeviceInfoSnapshot


@dataclass(frozen=True)
class Closed:
    state: ClassVar[SessionState] = SessionState.CLOSED
    reason: str
    error: BaseException | None = None


SessionPhase = Unconnected | AwaitingHelloResponse | Connected | Authenticated | Closed


@dataclass
class PendingRequest:
    """Caller waiting for a reply of ``expected_tag``.

    Attributes:
        expected_tag: Response type tag that completes this request
        correlation_id: Correlation ID for observability
        sent_at: ``time.perf_counter()`` reading when the request was registered
        future: Resolved with the decoded reply, or failed on close
    """

    expected_tag: int
    correlation_id: str
    sent_at: float
    future: asyncio.Future[Any]

    def release(self) -> None:
        """Settle the future once its caller stops waiting."""
        if not self.future.done():
            self.future.cancel()
        elif not self.future.cancelled():
            # Marks a close-time exception as retrieved
            self.future.exception()

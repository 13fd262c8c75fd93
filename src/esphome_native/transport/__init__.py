"""Connection, authentication and session layer."""

from esphome_native.transport.channel import FrameChannel
from esphome_native.transport.handshake import ConnectedDevice, connect
from esphome_native.transport.retry_policy import RetryPolicy, TimeoutConfig
from esphome_native.transport.session import Session
from esphome_native.transport.types import ClientInfo, DeviceInfoSnapshot, SessionState, StreamEndpoint

__all__ = [
    "ClientInfo",
    "ConnectedDevice",
    "DeviceInfoSnapshot",
    "FrameChannel",
    "RetryPolicy",
    "Session",
    "SessionState",
    "StreamEndpoint",
    "TimeoutConfig",
    "connect",
]

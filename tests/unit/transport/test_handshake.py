"""Unit tests for the connection handshake."""

from __future__ import annotations

import base64

import pytest

from esphome_native.protocol.exceptions import EncryptionRequiredError, TransportError
from esphome_native.protocol.message_types import MessageType
from esphome_native.protocol.messages import PingResponse
from esphome_native.transport.exceptions import (
    HandshakeFailedError,
    InvalidEncryptionKeyError,
    UnexpectedMessageError,
)
from esphome_native.transport.handshake import ConnectedDevice, connect
from esphome_native.transport.retry_policy import TimeoutConfig
from esphome_native.transport.types import APIVersion, ClientInfo, SessionState
from tests.helpers.expectations import expect_async_exception
from tests.helpers.mock_device import (
    DEVICE_NAME,
    EncryptedMockDevice,
    MockDevice,
    no_reply,
    reply_with,
)

# Test constants
PSK = bytes(range(32))
NOISE_KEY = base64.b64encode(PSK).decode()
SHORT_TIMEOUT = 0.05


class TestConnect:
    """Tests for the plaintext hello exchange."""

    @pytest.mark.asyncio
    async def test_success_reaches_connected(self) -> None:
        device = MockDevice()
        connected = await connect(device.endpoint)

        assert isinstance(connected, ConnectedDevice)
        assert connected.state is SessionState.CONNECTED
        assert connected.device_info.name == DEVICE_NAME
        assert connected.device_info.api_version == APIVersion(1, 10)
        assert connected.device_info.server_info == "mock-esphome 2024.6.0"
        assert connected.device_info.auth_required is False
        assert connected.device_info.encrypted is False
        assert device.received_types() == [MessageType.HELLO_REQUEST, MessageType.DEVICE_INFO_REQUEST]
        assert not device.writer.closed

    @pytest.mark.asyncio
    async def test_hello_carries_client_info(self) -> None:
        device = MockDevice()
        await connect(device.endpoint, ClientInfo(name="pytest-client"))
        hello = device.received[0]
        assert b"pytest-client" in hello.payload

    @pytest.mark.asyncio
    async def test_password_device_reports_auth_required(self) -> None:
        connected = await connect(MockDevice(uses_password=True).endpoint)
        assert connected.device_info.auth_required is True

    @pytest.mark.asyncio
    async def test_newer_minor_version_accepted(self) -> None:
        connected = await connect(MockDevice(api_version=(1, 42)).endpoint)
        assert connected.device_info.api_version == APIVersion(1, 42)

    @pytest.mark.asyncio
    async def test_major_version_mismatch(self) -> None:
        device = MockDevice(api_version=(2, 0))
        err = await expect_async_exception(connect, HandshakeFailedError, device.endpoint)
        assert err.reason == "incompatible_api_version"
        assert device.writer.closed
        # Device info is never requested after a version mismatch
        assert device.received_types() == [MessageType.HELLO_REQUEST]

    @pytest.mark.asyncio
    async def test_wrong_reply_type(self) -> None:
        device = MockDevice()
        device.handlers[MessageType.HELLO_REQUEST] = reply_with(PingResponse())
        err = await expect_async_exception(connect, UnexpectedMessageError, device.endpoint)
        assert (err.expected, err.received) == (MessageType.HELLO_RESPONSE, MessageType.PING_RESPONSE)
        assert device.writer.closed

    @pytest.mark.asyncio
    async def test_peer_closes_during_hello(self) -> None:
        device = MockDevice()
        device.handlers[MessageType.HELLO_REQUEST] = no_reply
        device.hang_up()
        err = await expect_async_exception(connect, HandshakeFailedError, device.endpoint)
        assert err.reason == "connection_closed_by_peer"
        assert isinstance(err.__cause__, TransportError)
        assert device.writer.closed

    @pytest.mark.asyncio
    async def test_write_failure(self) -> None:
        device = MockDevice()
        device.writer.fail_writes = True
        err = await expect_async_exception(connect, HandshakeFailedError, device.endpoint)
        assert err.reason.startswith("write_failed")

    @pytest.mark.asyncio
    async def test_deadline(self) -> None:
        device = MockDevice()
        device.handlers[MessageType.DEVICE_INFO_REQUEST] = no_reply
        config = TimeoutConfig(handshake_timeout_seconds=SHORT_TIMEOUT)
        err = await expect_async_exception(connect, HandshakeFailedError, device.endpoint, timeout_config=config)
        assert err.reason == "handshake_timeout"
        assert isinstance(err.__cause__, TimeoutError)
        assert device.writer.closed

    @pytest.mark.asyncio
    async def test_encrypted_device_detected(self) -> None:
        device = MockDevice()
        device.handlers[MessageType.HELLO_REQUEST] = no_reply
        device.push_raw(b"\x01\x00\x00")
        await expect_async_exception(connect, EncryptionRequiredError, device.endpoint)
        assert device.writer.closed


class TestEncryptedConnect:
    """Tests for connect over the Noise transport."""

    @pytest.mark.asyncio
    async def test_session_over_noise(self) -> None:
        device = EncryptedMockDevice(PSK)
        device.handlers[MessageType.PING_REQUEST] = reply_with(PingResponse())

        connected = await connect(device.endpoint, noise_psk=NOISE_KEY, expected_name=DEVICE_NAME)
        assert connected.device_info.encrypted is True
        assert device.received_types() == [MessageType.HELLO_REQUEST, MessageType.DEVICE_INFO_REQUEST]

        session = await connected.start_session()
        try:
            assert await session.ping() == PingResponse()
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_wrong_key_is_not_wrapped(self) -> None:
        device = EncryptedMockDevice(bytes(32))
        await expect_async_exception(connect, InvalidEncryptionKeyError, device.endpoint, noise_psk=NOISE_KEY)
        assert device.writer.closed

"""Unit tests for login and session start on a connected device."""

from __future__ import annotations

import pytest

from esphome_native.protocol.exceptions import TransportError
from esphome_native.protocol.message_types import MessageType
from esphome_native.protocol.messages import ConnectResponse, GetTimeRequest, HelloResponse, PingRequest
from esphome_native.transport.exceptions import (
    AuthenticationNotRequiredError,
    AuthenticationRejectedError,
    AuthenticationRequiredError,
    ConnectionClosedError,
    InvalidStateError,
    UnexpectedMessageError,
)
from esphome_native.transport.handshake import ConnectedDevice, connect
from esphome_native.transport.retry_policy import TimeoutConfig
from esphome_native.transport.session import Session
from esphome_native.transport.types import SessionState
from tests.helpers.expectations import expect_async_exception
from tests.helpers.mock_device import DEVICE_PASSWORD, MockDevice, no_reply, reply_with

# Test constants
WRONG_PASSWORD = "letmein"
SHORT_TIMEOUT = 0.05


async def _connected(device: MockDevice, config: TimeoutConfig | None = None) -> ConnectedDevice:
    return await connect(device.endpoint, timeout_config=config)


class TestAuthenticate:
    """Tests for ConnectedDevice.authenticate."""

    @pytest.mark.asyncio
    async def test_rejected_then_accepted(self) -> None:
        device = MockDevice(uses_password=True)
        connected = await _connected(device)

        await expect_async_exception(connected.authenticate, AuthenticationRejectedError, WRONG_PASSWORD)
        assert connected.state is SessionState.CONNECTED
        assert not device.writer.closed

        session = await connected.authenticate(DEVICE_PASSWORD)
        try:
            assert isinstance(session, Session)
            assert session.state is SessionState.AUTHENTICATED
            assert device.received_types().count(MessageType.CONNECT_REQUEST) == 2
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_not_required(self) -> None:
        device = MockDevice()
        connected = await _connected(device)
        writes_before = device.writer.write_calls

        await expect_async_exception(connected.authenticate, AuthenticationNotRequiredError, DEVICE_PASSWORD)
        assert device.writer.write_calls == writes_before
        assert connected.state is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_unexpected_reply_closes(self) -> None:
        device = MockDevice(uses_password=True)
        device.handlers[MessageType.CONNECT_REQUEST] = reply_with(HelloResponse(api_version_major=1))
        connected = await _connected(device)

        err = await expect_async_exception(connected.authenticate, UnexpectedMessageError, DEVICE_PASSWORD)
        assert err.received == MessageType.HELLO_RESPONSE
        assert connected.state is SessionState.CLOSED
        assert device.writer.closed
        await expect_async_exception(connected.authenticate, ConnectionClosedError, DEVICE_PASSWORD)

    @pytest.mark.asyncio
    async def test_login_deadline(self) -> None:
        device = MockDevice(uses_password=True)
        device.handlers[MessageType.CONNECT_REQUEST] = no_reply
        connected = await _connected(device, TimeoutConfig(auth_timeout_seconds=SHORT_TIMEOUT))

        err = await expect_async_exception(connected.authenticate, TransportError, DEVICE_PASSWORD)
        assert err.reason == "auth_timeout"
        assert connected.state is SessionState.CLOSED
        assert device.writer.closed

    @pytest.mark.asyncio
    async def test_peer_closes_during_login(self) -> None:
        device = MockDevice(uses_password=True)
        device.handlers[MessageType.CONNECT_REQUEST] = no_reply
        connected = await _connected(device)
        device.hang_up()

        err = await expect_async_exception(connected.authenticate, TransportError, DEVICE_PASSWORD)
        assert err.reason == "connection_closed_by_peer"
        assert connected.state is SessionState.CLOSED

    @pytest.mark.asyncio
    async def test_housekeeping_answered_during_login(self) -> None:
        device = MockDevice(uses_password=True)
        device.handlers[MessageType.CONNECT_REQUEST] = reply_with(PingRequest(), GetTimeRequest(), ConnectResponse())
        connected = await _connected(device)

        session = await connected.authenticate(DEVICE_PASSWORD)
        try:
            types = device.received_types()
            assert MessageType.PING_RESPONSE in types
            assert MessageType.GET_TIME_RESPONSE in types
            assert session.state is SessionState.AUTHENTICATED
        finally:
            await session.close()


class TestStartSession:
    """Tests for ConnectedDevice.start_session."""

    @pytest.mark.asyncio
    async def test_open_device(self) -> None:
        device = MockDevice()
        connected = await _connected(device)

        session = await connected.start_session()
        try:
            assert session.state is SessionState.CONNECTED
            assert session.device == device.name
            assert device.received_types()[-1] == MessageType.CONNECT_REQUEST
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_password_device_requires_authenticate(self) -> None:
        connected = await _connected(MockDevice(uses_password=True))
        await expect_async_exception(connected.start_session, AuthenticationRequiredError)
        assert connected.state is SessionState.CONNECTED

    @pytest.mark.asyncio
    async def test_handle_is_consumed(self) -> None:
        connected = await _connected(MockDevice())
        session = await connected.start_session()
        try:
            err = await expect_async_exception(connected.start_session, InvalidStateError)
            assert (err.operation, err.state) == ("start_session", "promoted")
        finally:
            await session.close()

    @pytest.mark.asyncio
    async def test_closed_handle(self) -> None:
        device = MockDevice()
        connected = await _connected(device)
        await connected.close()
        await connected.close()

        err = await expect_async_exception(connected.start_session, ConnectionClosedError)
        assert err.reason == "closed_by_caller"
        assert connected.state is SessionState.CLOSED
        # Closing the handle leaves the stream to its owner
        assert not device.writer.closed

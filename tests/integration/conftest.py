"""Fixtures for integration tests."""

from collections.abc import AsyncGenerator

import pytest

from tests.helpers.api_server import SERVER_PASSWORD, MockApiServer, ResponseMode


@pytest.fixture
async def mock_api_server() -> AsyncGenerator[MockApiServer]:
    """Fixture providing an open (no password) API server."""
    server = MockApiServer()
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def password_api_server() -> AsyncGenerator[MockApiServer]:
    """Fixture providing an API server that requires a password."""
    server = MockApiServer(password=SERVER_PASSWORD)
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def silent_api_server() -> AsyncGenerator[MockApiServer]:
    """Fixture providing a server that never answers the hello."""
    server = MockApiServer(response_mode=ResponseMode.SILENT)
    await server.start()
    yield server
    await server.stop()


@pytest.fixture
async def disconnecting_api_server() -> AsyncGenerator[MockApiServer]:
    """Fixture providing a server that hangs up on every connection."""
    server = MockApiServer(response_mode=ResponseMode.DISCONNECT)
    await server.start()
    yield server
    await server.stop()

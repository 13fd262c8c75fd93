"""Localhost native API server for integration tests."""

import asyncio
import logging
from enum import Enum

from google.protobuf.message import Message

from esphome_native.protocol.catalogue import DefaultCatalogue
from esphome_native.protocol.exceptions import EspHomeApiError
from esphome_native.protocol.frame_codec import encode_frame, read_frame
from esphome_native.protocol.message_types import MessageType
from esphome_native.protocol.messages import (
    ConnectRequest,
    ConnectResponse,
    DeviceInfoResponse,
    DisconnectResponse,
    GetTimeRequest,
    GetTimeResponse,
    HelloResponse,
    ListEntitiesDoneResponse,
    ListEntitiesSwitchResponse,
    PingResponse,
    SwitchStateResponse,
)

logger = logging.getLogger(__name__)

SERVER_NAME = "bench-node"
SERVER_PASSWORD = "s3cret"
SWITCH_KEY = 0x1234
SWITCH_ENTITY = ListEntitiesSwitchResponse(key=SWITCH_KEY, name="Relay")
SERVER_EPOCH = 1_700_000_000


class ResponseMode(Enum):
    """Response mode for the mock API server."""

    NORMAL = "normal"  # Answer every request
    SILENT = "silent"  # Never answer the hello (simulates a hung device)
    DISCONNECT = "disconnect"  # Accept connection then close immediately


Reply = list[tuple[int, bytes]]

CATALOGUE = DefaultCatalogue()


class MockApiServer:
    """Localhost ESPHome native API server speaking the plaintext protocol."""

    def __init__(
        self,
        response_mode: ResponseMode = ResponseMode.NORMAL,
        password: str | None = None,
        host: str = "127.0.0.1",
        port: int = 0,
    ):
        self.response_mode = response_mode
        self.password = password
        self.host = host
        self.port = port
        self.server: asyncio.Server | None = None
        self.received_types: list[int] = []
        self.connection_count = 0

    async def start(self) -> None:
        self.server = await asyncio.start_server(self._handle_client, self.host, self.port)
        if self.port == 0:
            self.port = self.server.sockets[0].getsockname()[1]
        logger.info("Mock API server started on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        if self.server:
            self.server.close()
            await self.server.wait_closed()
            logger.info("Mock API server stopped")

    def _replies(self, type_tag: int, payload: bytes) -> list[Message]:
        if type_tag == MessageType.HELLO_REQUEST:
            if self.response_mode == ResponseMode.SILENT:
                return []
            return [HelloResponse(api_version_major=1, api_version_minor=10, server_info="bench 2024.6.0", name=SERVER_NAME)]
        if type_tag == MessageType.DEVICE_INFO_REQUEST:
            info = DeviceInfoResponse(
                uses_password=self.password is not None,
                name=SERVER_NAME,
                mac_address="02:00:00:00:00:01",
                esphome_version="2024.6.0",
                model="bench",
            )
            return [info]
        if type_tag == MessageType.CONNECT_REQUEST:
            attempt = ConnectRequest.FromString(payload).password
            return [ConnectResponse(invalid_password=self.password is not None and attempt != self.password)]
        if type_tag == MessageType.PING_REQUEST:
            return [PingResponse()]
        if type_tag == MessageType.GET_TIME_REQUEST:
            return [GetTimeResponse(epoch_seconds=SERVER_EPOCH)]
        if type_tag == MessageType.LIST_ENTITIES_REQUEST:
            return [SWITCH_ENTITY, ListEntitiesDoneResponse()]
        if type_tag == MessageType.SUBSCRIBE_STATES_REQUEST:
            return [SwitchStateResponse(key=SWITCH_KEY, state=True), GetTimeRequest()]
        if type_tag == MessageType.DISCONNECT_REQUEST:
            return [DisconnectResponse()]
        return []

    def _answer(self, type_tag: int, payload: bytes) -> Reply:
        return [CATALOGUE.encode(message) for message in self._replies(type_tag, payload)]

    async def _handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.connection_count += 1
        logger.info("Connection #%d from %s", self.connection_count, writer.get_extra_info("peername"))

        if self.response_mode == ResponseMode.DISCONNECT:
            writer.close()
            await writer.wait_closed()
            return

        try:
            while True:
                frame = await read_frame(reader)
                self.received_types.append(frame.type_tag)
                for type_tag, payload in self._answer(frame.type_tag, frame.payload):
                    writer.write(encode_frame(type_tag, payload))
                await writer.drain()
                if frame.type_tag == MessageType.DISCONNECT_REQUEST:
                    break
        except EspHomeApiError as e:
            logger.info("Client connection ended: %s", e)
        except OSError as e:
            logger.warning("Socket error with client: %s", e)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                logger.warning("Error closing writer: %s", e)

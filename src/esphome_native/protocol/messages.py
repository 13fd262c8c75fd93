"""Native API message classes.

The messages are the generated protobuf classes shipped with ``aioesphomeapi``
(``api_pb2``), keyed by wire tag in ``MESSAGE_TYPE_TO_PROTO``. The login pair
is looked up by tag because newer ``api.proto`` revisions call it
``AuthenticationRequest`` / ``AuthenticationResponse``.
"""

from __future__ import annotations

from dataclasses import dataclass

# pylint: disable=no-name-in-module
from aioesphomeapi.api_pb2 import (
    BinarySensorStateResponse,
    DeviceInfoRequest,
    DeviceInfoResponse,
    DisconnectRequest,
    DisconnectResponse,
    GetTimeRequest,
    GetTimeResponse,
    HelloRequest,
    HelloResponse,
    LightStateResponse,
    ListEntitiesDoneResponse,
    ListEntitiesRequest,
    ListEntitiesSwitchResponse,
    PingRequest,
    PingResponse,
    SensorStateResponse,
    SubscribeStatesRequest,
    SwitchStateResponse,
    TextSensorStateResponse,
)
from aioesphomeapi.core import MESSAGE_TYPE_TO_PROTO
from google.protobuf.message import Message

from esphome_native.protocol.message_types import MessageType

__all__ = [
    "LIST_ENTITIES_RESPONSE_TYPES",
    "MESSAGE_TYPE_TO_PROTO",
    "BinarySensorStateResponse",
    "ConnectRequest",
    "ConnectResponse",
    "DeviceInfoRequest",
    "DeviceInfoResponse",
    "DisconnectRequest",
    "DisconnectResponse",
    "GetTimeRequest",
    "GetTimeResponse",
    "HelloRequest",
    "HelloResponse",
    "LightStateResponse",
    "ListEntitiesDoneResponse",
    "ListEntitiesRequest",
    "ListEntitiesSwitchResponse",
    "Message",
    "PingRequest",
    "PingResponse",
    "SensorStateResponse",
    "SubscribeStatesRequest",
    "SwitchStateResponse",
    "TextSensorStateResponse",
    "UnknownMessage",
]

ConnectRequest: type[Message] = MESSAGE_TYPE_TO_PROTO[MessageType.CONNECT_REQUEST]
ConnectResponse: type[Message] = MESSAGE_TYPE_TO_PROTO[MessageType.CONNECT_RESPONSE]

# Entity descriptions sent between ListEntitiesRequest and ListEntitiesDoneResponse
LIST_ENTITIES_RESPONSE_TYPES: frozenset[int] = frozenset(
    tag
    for tag, message_cls in MESSAGE_TYPE_TO_PROTO.items()
    if message_cls.__name__.startswith("ListEntities")
    and message_cls.__name__.endswith("Response")
    and message_cls is not ListEntitiesDoneResponse
)


@dataclass(frozen=True)
class UnknownMessage:
    """Undecoded frame, produced only by a catalogue with ``allow_unknown``."""

    type_tag: int
    payload: bytes

"""Message catalogue: maps type tags to message classes and back.

The session depends only on the ``MessageCatalogue`` protocol. ``DefaultCatalogue``
covers every message in ``aioesphomeapi``'s tag map.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Protocol

from google.protobuf.message import DecodeError, Message

from esphome_native.protocol.exceptions import MalformedPayloadError, UnknownMessageTypeError
from esphome_native.protocol.messages import MESSAGE_TYPE_TO_PROTO, UnknownMessage

logger = logging.getLogger(__name__)


class MessageCatalogue(Protocol):
    """Opaque encode/decode capability consumed by the session."""

    def encode(self, message: Any) -> tuple[int, bytes]: ...

    def decode(self, type_tag: int, data: bytes) -> Any: ...


class DefaultCatalogue:
    """Catalogue backed by generated protobuf classes.

    Args:
        messages: Tag to class map (defaults to ``MESSAGE_TYPE_TO_PROTO``)
        allow_unknown: Decode unregistered tags to ``UnknownMessage`` instead
            of raising ``UnknownMessageTypeError``
    """

    def __init__(
        self,
        messages: Mapping[int, type[Message]] | None = None,
        *,
        allow_unknown: bool = False,
    ) -> None:
        self.allow_unknown = allow_unknown
        self._by_tag: dict[int, type[Message]] = {}
        self._by_class: dict[type[Message], int] = {}
        for type_tag, message_cls in (MESSAGE_TYPE_TO_PROTO if messages is None else messages).items():
            self.register(type_tag, message_cls)

    def register(self, type_tag: int, message_cls: type[Message]) -> None:
        tag = int(type_tag)
        existing = self._by_tag.get(tag)
        if existing is not None and existing is not message_cls:
            msg = f"type tag {tag} already registered to {existing.__name__}"
            raise ValueError(msg)
        self._by_tag[tag] = message_cls
        self._by_class[message_cls] = tag

    def __contains__(self, type_tag: object) -> bool:
        return type_tag in self._by_tag

    def encode(self, message: Message | UnknownMessage) -> tuple[int, bytes]:
        if isinstance(message, UnknownMessage):
            return message.type_tag, message.payload
        type_tag = self._by_class.get(type(message))
        if type_tag is None:
            raise UnknownMessageTypeError(-1, f"cannot encode {type(message).__name__}")
        return type_tag, message.SerializeToString()

    def decode(self, type_tag: int, data: bytes) -> Message | UnknownMessage:
        """Decode a payload for ``type_tag``.

        Raises:
            UnknownMessageTypeError: Tag not registered and ``allow_unknown`` unset
            MalformedPayloadError: Payload is not a valid protobuf encoding
        """
        message_cls = self._by_tag.get(type_tag)
        if message_cls is None:
            if self.allow_unknown:
                logger.debug("Passing through unregistered type %d", type_tag, extra={"type_tag": type_tag})
                return UnknownMessage(type_tag=type_tag, payload=data)
            raise UnknownMessageTypeError(type_tag)

        try:
            return message_cls.FromString(data)
        except DecodeError as err:
            raise MalformedPayloadError(type_tag, f"protobuf_decode_failed: {err}", data) from err

    def __repr__(self) -> str:
        return f"DefaultCatalogue(types={len(self._by_tag)}, allow_unknown={self.allow_unknown})"

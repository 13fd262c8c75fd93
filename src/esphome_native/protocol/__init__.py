"""Wire-level pieces: varints, frame envelope, message classes and the message catalogue."""

from esphome_native.protocol.catalogue import DefaultCatalogue, MessageCatalogue
from esphome_native.protocol.frame_codec import Frame, PlaintextFrameCodec, encode_frame, read_frame, write_frame
from esphome_native.protocol.message_types import MessageType

__all__ = [
    "DefaultCatalogue",
    "Frame",
    "MessageCatalogue",
    "MessageType",
    "PlaintextFrameCodec",
    "encode_frame",
    "read_frame",
    "write_frame",
]

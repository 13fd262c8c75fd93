"""Exception types for wire-level and catalogue errors.

Errors raise instead of returning None. Everything derives from
``EspHomeApiError`` so callers can catch the whole family at once.
"""

from __future__ import annotations

_PREVIEW_BYTES = 16


class EspHomeApiError(Exception):
    """Base exception for all native API client errors."""


class TransportError(EspHomeApiError):
    """I/O failure on the underlying stream.

    Raised when the peer closes the stream at a frame boundary or a read or
    write raises ``OSError``. Fatal for the session.

    Attributes:
        reason: Specific failure reason (e.g., "connection_closed_by_peer")
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Transport error: {reason}")


class MalformedFrameError(EspHomeApiError):
    """Frame envelope violates the wire format.

    Frame boundaries cannot be trusted after this error, so it is fatal for
    the session.

    Attributes:
        reason: Specific failure reason (e.g., "truncated", "frame_too_large")
        data_preview: First 16 bytes of offending data (never the full payload)
    """

    def __init__(self, reason: str, data: bytes = b"") -> None:
        self.reason = reason
        self.data_preview = data[:_PREVIEW_BYTES] if data else b""
        super().__init__(f"Malformed frame: {reason}")


class TruncatedFrameError(MalformedFrameError):
    """Stream ended in the middle of a frame."""

    def __init__(self, expected: int, received: int, data: bytes = b"") -> None:
        self.expected = expected
        self.received = received
        super().__init__(f"truncated (expected {expected} bytes, got {received})", data)


class FrameTooLargeError(MalformedFrameError):
    """Declared payload length exceeds the configured maximum.

    Raised before any payload bytes are read.
    """

    def __init__(self, declared_length: int, max_frame_size: int) -> None:
        self.declared_length = declared_length
        self.max_frame_size = max_frame_size
        super().__init__(f"frame_too_large ({declared_length} > {max_frame_size})")


class MalformedVarintError(MalformedFrameError):
    """Varint runs past the 10-byte bound or ends without a final byte."""


class InvalidPreambleError(MalformedFrameError):
    """First byte of a frame is not a known preamble."""

    def __init__(self, preamble: int) -> None:
        self.preamble = preamble
        super().__init__(f"invalid_preamble 0x{preamble:02x}", bytes([preamble]))


class EncryptionRequiredError(EspHomeApiError):
    """Device answered a plaintext frame with the encrypted preamble.

    Reconnect and pass the device's encryption key to ``connect``.
    """

    def __init__(self) -> None:
        super().__init__("Device requires an encrypted connection")


class CatalogueError(EspHomeApiError):
    """Message catalogue could not encode or decode a message."""


class UnknownMessageTypeError(CatalogueError):
    """No message type is registered for this tag or class.

    Attributes:
        type_tag: Numeric tag (or -1 when encoding an unregistered class)
    """

    def __init__(self, type_tag: int, detail: str = "") -> None:
        self.type_tag = type_tag
        message = f"Unknown message type {type_tag}"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class MalformedPayloadError(CatalogueError):
    """Payload bytes do not decode into the message registered for the tag.

    Attributes:
        type_tag: Numeric tag of the frame
        reason: Specific failure reason
        data_preview: First 16 bytes of the payload
    """

    def __init__(self, type_tag: int, reason: str, data: bytes = b"") -> None:
        self.type_tag = type_tag
        self.reason = reason
        self.data_preview = data[:_PREVIEW_BYTES] if data else b""
        super().__init__(f"Malformed payload for type {type_tag}: {reason}")

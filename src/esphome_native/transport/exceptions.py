"""Exception types for connection, handshake and session errors.

Extends the wire-level hierarchy in ``esphome_native.protocol.exceptions``.
"""

from __future__ import annotations

from esphome_native.protocol.exceptions import EspHomeApiError
from esphome_native.protocol.message_types import describe_type


class ConnectionClosedError(EspHomeApiError):
    """Operation attempted on a closed session.

    Raised for every operation after ``close()`` or after a fatal error, and
    set on requests that were still pending when the session closed.

    Attributes:
        reason: Why the session closed
        state: Session state when the operation was attempted
    """

    def __init__(self, reason: str, state: str = "closed") -> None:
        self.reason: str = reason
        self.state: str = state
        super().__init__(f"Connection closed: {reason} (state: {state})")


class HandshakeFailedError(EspHomeApiError):
    """Hello exchange failed on I/O, deadline or version mismatch.

    The underlying cause is chained as ``__cause__``. No retry is attempted.

    Attributes:
        reason: Specific failure reason
    """

    def __init__(self, reason: str) -> None:
        self.reason: str = reason
        super().__init__(f"Handshake failed: {reason}")


class UnexpectedMessageError(EspHomeApiError):
    """A frame of the wrong type arrived where a specific type was required.

    Attributes:
        expected: Expected type tag
        received: Received type tag
    """

    def __init__(self, expected: int, received: int) -> None:
        self.expected: int = expected
        self.received: int = received
        super().__init__(f"Unexpected message: expected {describe_type(expected)}, received {describe_type(received)}")


class AuthenticationRejectedError(EspHomeApiError):
    """Device rejected the password. The connection stays usable for a retry."""

    def __init__(self) -> None:
        super().__init__("Authentication rejected: invalid password")


class AuthenticationNotRequiredError(EspHomeApiError):
    """``authenticate`` called on a device that reported no password."""

    def __init__(self) -> None:
        super().__init__("Authentication not required by device; use start_session()")


class AuthenticationRequiredError(EspHomeApiError):
    """``start_session`` called on a device that requires a password."""

    def __init__(self) -> None:
        super().__init__("Authentication required by device; use authenticate()")


class InvalidStateError(EspHomeApiError):
    """Operation not valid in the current state.

    Attributes:
        operation: Operation that was attempted
        state: State at the time of the call
    """

    def __init__(self, operation: str, state: str) -> None:
        self.operation: str = operation
        self.state: str = state
        super().__init__(f"Operation '{operation}' not valid in state {state}")


class RequestTimeoutError(EspHomeApiError):
    """No reply of the expected type arrived before the deadline.

    Only the request fails; the session stays open.

    Attributes:
        expected_tag: Response type tag that was awaited
        timeout_seconds: Deadline that elapsed
        correlation_id: Correlation ID of the request
    """

    def __init__(self, expected_tag: int, timeout_seconds: float, correlation_id: str = "") -> None:
        self.expected_tag: int = expected_tag
        self.timeout_seconds: float = timeout_seconds
        self.correlation_id: str = correlation_id
        super().__init__(f"Request timed out after {timeout_seconds}s waiting for {describe_type(expected_tag)}")


class RequestPendingError(EspHomeApiError):
    """A request awaiting the same response type is already outstanding.

    Replies carry no request id, so only one request per response type can be
    in flight at a time.

    Attributes:
        expected_tag: Response type tag already being awaited
    """

    def __init__(self, expected_tag: int) -> None:
        self.expected_tag: int = expected_tag
        super().__init__(f"A request awaiting {describe_type(expected_tag)} is already pending")


class UnsupportedFeatureError(EspHomeApiError):
    """Negotiated connection does not support the requested feature.

    Attributes:
        feature: Feature name (e.g., "noise_encryption")
        reason: Why it is unavailable
    """

    def __init__(self, feature: str, reason: str = "not_supported_by_server") -> None:
        self.feature: str = feature
        self.reason: str = reason
        super().__init__(f"Unsupported feature {feature}: {reason}")


class EncryptionHandshakeError(EspHomeApiError):
    """Noise handshake rejected by the device or failed to verify.

    Attributes:
        reason: Explanation sent by the device or the local failure reason
    """

    def __init__(self, reason: str) -> None:
        self.reason: str = reason
        super().__init__(f"Encryption handshake failed: {reason}")


class InvalidEncryptionKeyError(EncryptionHandshakeError):
    """Pre-shared key is malformed or does not match the device's key."""

"""Timeout configuration and retry backoff.

The core never retries on its own. ``RetryPolicy`` is offered to callers that
want to redial after a failed connect (the CLI harness uses it).
"""

from __future__ import annotations

import random

from esphome_native.const import (
    ESPHOME_NATIVE_HANDSHAKE_TIMEOUT,
    ESPHOME_NATIVE_KEEPALIVE_INTERVAL,
    ESPHOME_NATIVE_KEEPALIVE_TIMEOUT,
    ESPHOME_NATIVE_MAX_FRAME_SIZE,
    ESPHOME_NATIVE_REQUEST_TIMEOUT,
    ESPHOME_NATIVE_UNSOLICITED_QUEUE_SIZE,
    float_env,
    int_env,
)


class TimeoutConfig:
    """Deadlines and limits for one connection.

    Defaults come from the ``ESPHOME_NATIVE_*`` environment settings.
    """

    def __init__(
        self,
        handshake_timeout_seconds: float = ESPHOME_NATIVE_HANDSHAKE_TIMEOUT,
        request_timeout_seconds: float = ESPHOME_NATIVE_REQUEST_TIMEOUT,
        auth_timeout_seconds: float | None = None,
        keepalive_interval_seconds: float = ESPHOME_NATIVE_KEEPALIVE_INTERVAL,
        keepalive_timeout_seconds: float = ESPHOME_NATIVE_KEEPALIVE_TIMEOUT,
        max_frame_size: int = ESPHOME_NATIVE_MAX_FRAME_SIZE,
        unsolicited_queue_size: int = ESPHOME_NATIVE_UNSOLICITED_QUEUE_SIZE,
    ):
        """Initialize timeout configuration.

        Args:
            handshake_timeout_seconds: Deadline for the whole hello/device-info exchange
            request_timeout_seconds: Default deadline for ``Session.request``
            auth_timeout_seconds: Deadline for the login reply (default: handshake timeout)
            keepalive_interval_seconds: Client ping interval, 0 disables keepalive
            keepalive_timeout_seconds: Deadline for a keepalive pong
            max_frame_size: Largest accepted frame payload in bytes
            unsolicited_queue_size: Backlog kept while no sink is registered
        """
        if handshake_timeout_seconds <= 0 or request_timeout_seconds <= 0:
            msg = "handshake and request timeouts must be positive"
            raise ValueError(msg)
        if keepalive_interval_seconds < 0:
            msg = "keepalive interval cannot be negative"
            raise ValueError(msg)
        if unsolicited_queue_size < 1:
            msg = "unsolicited queue size must be at least 1"
            raise ValueError(msg)

        self.handshake_timeout_seconds = handshake_timeout_seconds
        self.request_timeout_seconds = request_timeout_seconds
        self.auth_timeout_seconds = (
            auth_timeout_seconds if auth_timeout_seconds is not None else handshake_timeout_seconds
        )
        self.keepalive_interval_seconds = keepalive_interval_seconds
        self.keepalive_timeout_seconds = keepalive_timeout_seconds
        self.max_frame_size = max_frame_size
        self.unsolicited_queue_size = unsolicited_queue_size

    @classmethod
    def from_env(cls) -> TimeoutConfig:
        """Build a config from the current environment (after ``--env`` loading)."""
        return cls(
            handshake_timeout_seconds=float_env("ESPHOME_NATIVE_HANDSHAKE_TIMEOUT", ESPHOME_NATIVE_HANDSHAKE_TIMEOUT),
            request_timeout_seconds=float_env("ESPHOME_NATIVE_REQUEST_TIMEOUT", ESPHOME_NATIVE_REQUEST_TIMEOUT),
            keepalive_interval_seconds=float_env("ESPHOME_NATIVE_KEEPALIVE_INTERVAL", ESPHOME_NATIVE_KEEPALIVE_INTERVAL),
            keepalive_timeout_seconds=float_env("ESPHOME_NATIVE_KEEPALIVE_TIMEOUT", ESPHOME_NATIVE_KEEPALIVE_TIMEOUT),
            max_frame_size=int_env("ESPHOME_NATIVE_MAX_FRAME_SIZE", ESPHOME_NATIVE_MAX_FRAME_SIZE),
            unsolicited_queue_size=int_env(
                "ESPHOME_NATIVE_UNSOLICITED_QUEUE_SIZE",
                ESPHOME_NATIVE_UNSOLICITED_QUEUE_SIZE,
            ),
        )

    @property
    def keepalive_enabled(self) -> bool:
        return self.keepalive_interval_seconds > 0

    def __repr__(self) -> str:
        return (
            f"TimeoutConfig(handshake={self.handshake_timeout_seconds:.1f}s, "
            f"request={self.request_timeout_seconds:.1f}s, "
            f"auth={self.auth_timeout_seconds:.1f}s, "
            f"keepalive={self.keepalive_interval_seconds:.1f}s/{self.keepalive_timeout_seconds:.1f}s, "
            f"max_frame={self.max_frame_size})"
        )


class RetryPolicy:
    """Exponential backoff with jitter for redial loops."""

    def __init__(
        self,
        base_delay_seconds: float = 0.5,
        max_delay_seconds: float = 30.0,
        jitter_factor: float = 0.1,
        max_attempts: int = 5,
    ):
        """Initialize retry policy.

        Args:
            base_delay_seconds: Base delay for first retry (default: 0.5s)
            max_delay_seconds: Maximum delay cap (default: 30s)
            jitter_factor: Jitter as fraction of delay (default: 0.1 = 10%)
            max_attempts: Total attempts including the first (default: 5)
        """
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.jitter_factor = jitter_factor
        self.max_attempts = max_attempts

    def get_delay(self, attempt: int) -> float:
        """Return the delay before retry ``attempt`` (0-indexed).

        ``base * 2**attempt`` capped at the maximum, plus up to
        ``jitter_factor`` of that as random jitter.
        """
        delay = min(self.base_delay_seconds * (2**attempt), self.max_delay_seconds)
        jitter = random.uniform(0, delay * self.jitter_factor)
        return delay + jitter

    def should_retry(self, attempt: int) -> bool:
        """Whether another attempt is allowed after ``attempt`` failures."""
        return attempt + 1 < self.max_attempts

    def __repr__(self) -> str:
        return (
            f"RetryPolicy(base_delay={self.base_delay_seconds}s, "
            f"max_delay={self.max_delay_seconds}s, "
            f"jitter_factor={self.jitter_factor}, "
            f"max_attempts={self.max_attempts})"
        )

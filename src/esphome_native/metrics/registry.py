"""Prometheus metrics registry for native API connections."""

import threading
from typing import Final

from prometheus_client import (  # type: ignore[import-untyped]
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

# Framing metrics
esphome_native_frames_sent_total: Final = Counter(  # type: ignore[assignment]
    "esphome_native_frames_sent_total",
    "Total frames written",
    ["device", "message_type"],
)

esphome_native_frames_received_total: Final = Counter(  # type: ignore[assignment]
    "esphome_native_frames_received_total",
    "Total frames read",
    ["device", "message_type"],
)

esphome_native_decode_errors_total: Final = Counter(  # type: ignore[assignment]
    "esphome_native_decode_errors_total",
    "Total frame or payload decode errors",
    ["device", "reason"],
)

# Connection-phase metrics
esphome_native_handshake_total: Final = Counter(  # type: ignore[assignment]
    "esphome_native_handshake_total",
    "Total handshake attempts",
    ["device", "outcome"],
)

esphome_native_authentication_total: Final = Counter(  # type: ignore[assignment]
    "esphome_native_authentication_total",
    "Total authentication attempts",
    ["device", "outcome"],
)

esphome_native_session_state: Final = Gauge(  # type: ignore[assignment]
    "esphome_native_session_state",
    "Current session state",
    ["device", "state"],
)

# Session metrics
esphome_native_request_latency_seconds: Final = Histogram(  # type: ignore[assignment]
    "esphome_native_request_latency_seconds",
    "Request to matched reply latency in seconds",
    ["device", "message_type"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

esphome_native_request_timeout_total: Final = Counter(  # type: ignore[assignment]
    "esphome_native_request_timeout_total",
    "Total requests that timed out",
    ["device", "message_type"],
)

esphome_native_keepalive_total: Final = Counter(  # type: ignore[assignment]
    "esphome_native_keepalive_total",
    "Total keepalive exchanges",
    ["device", "outcome"],
)

esphome_native_unsolicited_total: Final = Counter(  # type: ignore[assignment]
    "esphome_native_unsolicited_total",
    "Total unsolicited messages by delivery outcome",
    ["device", "outcome"],
)

SESSION_STATES: Final = (
    "unconnected",
    "awaiting_hello_response",
    "connected",
    "authenticated",
    "closed",
)

_server_state = {"started": False}
_server_lock = threading.Lock()


def start_metrics_server(port: int = 9400) -> None:
    """Start Prometheus HTTP metrics server (idempotent)."""
    with _server_lock:
        if not _server_state["started"]:
            start_http_server(port)  # type: ignore[no-untyped-call]
            _server_state["started"] = True


def record_frame_sent(device: str, message_type: str) -> None:
    esphome_native_frames_sent_total.labels(device=device, message_type=message_type).inc()  # type: ignore[no-untyped-call]


def record_frame_received(device: str, message_type: str) -> None:
    esphome_native_frames_received_total.labels(device=device, message_type=message_type).inc()  # type: ignore[no-untyped-call]


def record_decode_error(device: str, reason: str) -> None:
    esphome_native_decode_errors_total.labels(device=device, reason=reason).inc()  # type: ignore[no-untyped-call]


def record_handshake(device: str, outcome: str) -> None:
    esphome_native_handshake_total.labels(device=device, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_authentication(device: str, outcome: str) -> None:
    esphome_native_authentication_total.labels(device=device, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_session_state(device: str, state: str) -> None:
    """Set the gauge to 1 for ``state`` and 0 for every other state."""
    for s in SESSION_STATES:
        value = 1 if s == state else 0
        esphome_native_session_state.labels(device=device, state=s).set(value)  # type: ignore[no-untyped-call]


def record_request_latency(device: str, message_type: str, latency_seconds: float) -> None:
    esphome_native_request_latency_seconds.labels(device=device, message_type=message_type).observe(  # type: ignore[no-untyped-call]
        latency_seconds,
    )


def record_request_timeout(device: str, message_type: str) -> None:
    esphome_native_request_timeout_total.labels(device=device, message_type=message_type).inc()  # type: ignore[no-untyped-call]


def record_keepalive(device: str, outcome: str) -> None:
    esphome_native_keepalive_total.labels(device=device, outcome=outcome).inc()  # type: ignore[no-untyped-call]


def record_unsolicited(device: str, outcome: str) -> None:
    esphome_native_unsolicited_total.labels(device=device, outcome=outcome).inc()  # type: ignore[no-untyped-call]

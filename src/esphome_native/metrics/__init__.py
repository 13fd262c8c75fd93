"""Metrics module."""

from . import registry
from .registry import (
    record_authentication,
    record_decode_error,
    record_frame_received,
    record_frame_sent,
    record_handshake,
    record_keepalive,
    record_request_latency,
    record_request_timeout,
    record_session_state,
    record_unsolicited,
    start_metrics_server,
)

__all__ = [
    "record_authentication",
    "record_decode_error",
    "record_frame_received",
    "record_frame_sent",
    "record_handshake",
    "record_keepalive",
    "record_request_latency",
    "record_request_timeout",
    "record_session_state",
    "record_unsolicited",
    "registry",
    "start_metrics_server",
]

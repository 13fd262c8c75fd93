import os

from esphome_native import __version__

__all__ = [
    "CLIENT_API_VERSION_MAJOR",
    "CLIENT_API_VERSION_MINOR",
    "DEFAULT_API_PORT",
    "ESPHOME_NATIVE_CLIENT_INFO",
    "ESPHOME_NATIVE_DEBUG",
    "ESPHOME_NATIVE_HANDSHAKE_TIMEOUT",
    "ESPHOME_NATIVE_KEEPALIVE_INTERVAL",
    "ESPHOME_NATIVE_KEEPALIVE_TIMEOUT",
    "ESPHOME_NATIVE_LOG_FORMAT",
    "ESPHOME_NATIVE_LOG_HUMAN_OUTPUT",
    "ESPHOME_NATIVE_LOG_JSON_FILE",
    "ESPHOME_NATIVE_MAX_FRAME_SIZE",
    "ESPHOME_NATIVE_PERF_THRESHOLD_MS",
    "ESPHOME_NATIVE_PERF_TRACKING",
    "ESPHOME_NATIVE_REQUEST_TIMEOUT",
    "ESPHOME_NATIVE_UNSOLICITED_QUEUE_SIZE",
    "ESPHOME_NATIVE_VERSION",
    "YES_ANSWER",
    "float_env",
    "int_env",
]

YES_ANSWER = ("true", "1", "yes", "y", "t", 1, "on", "o")
ESPHOME_NATIVE_VERSION: str = __version__

# API version advertised in HelloRequest; servers with a different major are rejected
CLIENT_API_VERSION_MAJOR: int = 1
CLIENT_API_VERSION_MINOR: int = 10
DEFAULT_API_PORT: int = 6053


def float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


ESPHOME_NATIVE_DEBUG: bool = os.environ.get("ESPHOME_NATIVE_DEBUG", "0").casefold() in YES_ANSWER
ESPHOME_NATIVE_CLIENT_INFO: str = os.environ.get("ESPHOME_NATIVE_CLIENT_INFO", "esphome-native")

# Framing
ESPHOME_NATIVE_MAX_FRAME_SIZE: int = int_env("ESPHOME_NATIVE_MAX_FRAME_SIZE", 65535)
ESPHOME_NATIVE_UNSOLICITED_QUEUE_SIZE: int = int_env("ESPHOME_NATIVE_UNSOLICITED_QUEUE_SIZE", 256)

# Timeouts (seconds); a keepalive interval of 0 disables client pings
ESPHOME_NATIVE_HANDSHAKE_TIMEOUT: float = float_env("ESPHOME_NATIVE_HANDSHAKE_TIMEOUT", 10.0)
ESPHOME_NATIVE_REQUEST_TIMEOUT: float = float_env("ESPHOME_NATIVE_REQUEST_TIMEOUT", 30.0)
ESPHOME_NATIVE_KEEPALIVE_INTERVAL: float = float_env("ESPHOME_NATIVE_KEEPALIVE_INTERVAL", 0.0)
ESPHOME_NATIVE_KEEPALIVE_TIMEOUT: float = float_env("ESPHOME_NATIVE_KEEPALIVE_TIMEOUT", 10.0)

# Logging Configuration
ESPHOME_NATIVE_LOG_FORMAT: str = os.environ.get("ESPHOME_NATIVE_LOG_FORMAT", "human")  # "json", "human", or "both"
ESPHOME_NATIVE_LOG_JSON_FILE: str | None = os.environ.get("ESPHOME_NATIVE_LOG_JSON_FILE") or None
ESPHOME_NATIVE_LOG_HUMAN_OUTPUT: str = os.environ.get("ESPHOME_NATIVE_LOG_HUMAN_OUTPUT", "stderr")

# Performance Instrumentation
ESPHOME_NATIVE_PERF_TRACKING: bool = os.environ.get("ESPHOME_NATIVE_PERF_TRACKING", "true").casefold() in YES_ANSWER
_perf_threshold = os.environ.get("ESPHOME_NATIVE_PERF_THRESHOLD_MS", "500")
ESPHOME_NATIVE_PERF_THRESHOLD_MS: int = (
    int(_perf_threshold) if _perf_threshold and _perf_threshold.isdigit() else 500
)

"""Connect harness: dial a device, start a session and print what it says."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

import dotenv
from google.protobuf import text_format
from google.protobuf.message import Message

from esphome_native.const import DEFAULT_API_PORT, ESPHOME_NATIVE_VERSION, int_env
from esphome_native.correlation import correlation_context
from esphome_native.logging_abstraction import get_logger
from esphome_native.metrics import start_metrics_server
from esphome_native.protocol.catalogue import DefaultCatalogue
from esphome_native.protocol.exceptions import EspHomeApiError
from esphome_native.transport.handshake import connect
from esphome_native.transport.retry_policy import RetryPolicy, TimeoutConfig
from esphome_native.transport.session import Session
from esphome_native.transport.socket_abstraction import TCPConnection

logger = get_logger(__name__)


def load_env_file(env_file: Path) -> bool:
    """Load ``KEY=value`` settings from ``env_file`` into ``os.environ``."""
    env_path = env_file.expanduser().resolve()
    if not env_path.exists():
        logger.error("Environment file not found", extra={"path": str(env_path)})
        return False

    if dotenv.load_dotenv(env_path, override=True):
        logger.info("✓ Environment variables loaded", extra={"source": str(env_path)})
        return True
    logger.warning("No environment variables loaded from file", extra={"path": str(env_path)})
    return False


def _print_message(message: Any) -> None:
    if isinstance(message, Message):
        fields = text_format.MessageToString(message, as_one_line=True)
        print(f"<< {type(message).__name__} {{{fields}}}", flush=True)
    else:
        print(f"<< {message!r}", flush=True)


async def run_session(session: Session, listen_seconds: float) -> None:
    info = session.device_info
    print(f"Device:   {info.name} ({info.friendly_name or info.model})")
    print(f"Server:   {info.server_info}, API {info.api_version}, ESPHome {info.esphome_version}")
    print(f"MAC:      {info.mac_address}  encrypted={info.encrypted}")

    await session.ping()
    print("Ping:     ok")
    device_time = await session.get_time()
    print(f"Time:     {device_time.epoch_seconds}")

    entities = await session.list_entities()
    print(f"Entities: {len(entities)}")

    if listen_seconds > 0:
        session.register_sink(_print_message)
        await session.subscribe_states()
        logger.info("→ Listening for %.1fs", listen_seconds, extra={"device": info.name})
        await asyncio.sleep(listen_seconds)

    await session.disconnect()


async def main_async(args: argparse.Namespace) -> int:
    if args.metrics_port:
        start_metrics_server(args.metrics_port)
        logger.info("Metrics server started on port %d", args.metrics_port)

    conn = TCPConnection(args.host, args.port)
    if not await conn.connect_with_retry(RetryPolicy(max_attempts=args.max_attempts)):
        return 1

    try:
        device = await connect(
            conn.endpoint,
            catalogue=DefaultCatalogue(allow_unknown=True),
            noise_psk=args.encryption_key or None,
            expected_name=args.expected_name or None,
            timeout_config=TimeoutConfig.from_env(),
        )
        if device.device_info.auth_required:
            session = await device.authenticate(args.password or "")
        else:
            session = await device.start_session()
        async with session:
            await run_session(session, args.listen)
    except EspHomeApiError as e:
        logger.error("✗ %s", e, extra={"host": args.host, "error_type": type(e).__name__})
        return 1
    finally:
        await conn.close()
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Connect to an ESPHome device over the native API")
    parser.add_argument("--env", help="Path to the environment file", default=None, type=Path)
    parser.add_argument("--host", default=None, help="Device host (default: $ESPHOME_NATIVE_HOST)")
    parser.add_argument("--port", type=int, default=None, help=f"API port (default: {DEFAULT_API_PORT})")
    parser.add_argument("--password", default=None, help="API password (default: $ESPHOME_NATIVE_PASSWORD)")
    parser.add_argument(
        "--encryption-key",
        default=None,
        help="Base64 encryption key (default: $ESPHOME_NATIVE_ENCRYPTION_KEY)",
    )
    parser.add_argument("--expected-name", default=None, help="Device name the encrypted handshake must report")
    parser.add_argument(
        "--listen",
        type=float,
        default=0.0,
        help="Seconds to print state updates before disconnecting (default: 0)",
    )
    parser.add_argument("--max-attempts", type=int, default=3, help="TCP connect attempts (default: 3)")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO)",
    )
    parser.add_argument(
        "--metrics-port",
        type=int,
        default=0,
        help="Prometheus metrics port, 0 to disable (default: 0)",
    )
    args = parser.parse_args()

    logger.set_level(getattr(logging, args.log_level))
    logging.getLogger("esphome_native").setLevel(getattr(logging, args.log_level))

    if args.env:
        load_env_file(args.env)

    args.host = args.host or os.environ.get("ESPHOME_NATIVE_HOST")
    args.port = args.port or int_env("ESPHOME_NATIVE_PORT", DEFAULT_API_PORT)
    args.password = args.password if args.password is not None else os.environ.get("ESPHOME_NATIVE_PASSWORD")
    args.encryption_key = args.encryption_key or os.environ.get("ESPHOME_NATIVE_ENCRYPTION_KEY")
    if not args.host:
        parser.error("--host is required (or set ESPHOME_NATIVE_HOST)")

    with correlation_context():
        logger.info("Starting esphome-native-connect", extra={"version": ESPHOME_NATIVE_VERSION, "host": args.host})
        return asyncio.run(main_async(args))


if __name__ == "__main__":
    sys.exit(main())

"""Audio relay entry point.

Usage:
    python -m relay [--config CONFIG_PATH] [--port PORT]
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal

from .config import RelayConfig
from .server import RelayServer


def build_config(args: argparse.Namespace) -> RelayConfig:
    """Defaults → config file → environment → command line."""
    base = RelayConfig.load(args.config) if args.config else RelayConfig()
    config = RelayConfig.from_env(base=base)
    if args.host:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.ping_interval is not None:
        config.ping_interval = args.ping_interval
    if args.send_timeout is not None:
        config.send_timeout = args.send_timeout
    if args.debug:
        config.log_level = "DEBUG"
    return config


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="ESP32 audio WebSocket relay")
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to config.json",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Interface to bind (overrides config)",
    )
    parser.add_argument(
        "--port", "-p",
        type=int,
        default=None,
        help="Port to listen on (overrides config and $PORT)",
    )
    parser.add_argument(
        "--ping-interval",
        type=float,
        default=None,
        help="Seconds between liveness pings (overrides config)",
    )
    parser.add_argument(
        "--send-timeout",
        type=float,
        default=None,
        help="Seconds to wait on a peer that stopped reading before dropping it",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    config = build_config(args)

    logging.basicConfig(
        level=getattr(logging, config.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger = logging.getLogger(__name__)

    server = RelayServer(config)
    loop = asyncio.new_event_loop()
    stop = loop.create_future()

    def _shutdown(sig: int) -> None:
        logger.info("Received signal %d, shutting down", sig)
        if not stop.done():
            stop.set_result(None)

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _shutdown, sig)

    try:
        loop.run_until_complete(server.run(stop))
    finally:
        loop.close()


if __name__ == "__main__":
    main()

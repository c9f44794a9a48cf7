"""Command-line entry point: ``python -m uavlink``."""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from uavlink.config import HubConfig
from uavlink.exceptions import HubConfigError
from uavlink.server import TelemetryServer

_logger = logging.getLogger("uavlink")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="uavlink", description="UAV telemetry hub server")
    parser.add_argument("--host", help="Interface to bind (default: UAV_HOST or 0.0.0.0)")
    parser.add_argument("--port", type=int, help="TCP port (default: UAV_PORT or 3003)")
    parser.add_argument("--no-broker", action="store_true", help="Disable the MQTT broker transport")
    parser.add_argument("--no-fallback", action="store_true", help="Disable synthetic fallback telemetry")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser.parse_args(argv)


async def _serve(config: HubConfig) -> None:
    server = TelemetryServer(config)
    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for signame in ("SIGINT", "SIGTERM"):
        sig = getattr(signal, signame, None)
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops do not support signal handlers.
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    async with server:
        await stop.wait()
        await server.shutdown("signal")


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    overrides: dict[str, object] = {}
    if args.host:
        overrides["host"] = args.host
    if args.port:
        overrides["port"] = args.port
    if args.no_broker:
        overrides["broker"] = {"enabled": False}
    if args.no_fallback:
        overrides["simulation"] = {"enabled": False}

    try:
        config = HubConfig.from_env(**overrides)
    except HubConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # aiohttp access logs are noisy at DEBUG.
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)

    try:
        asyncio.run(_serve(config))
    except KeyboardInterrupt:
        _logger.info("Interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())

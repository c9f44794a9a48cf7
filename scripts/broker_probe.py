#!/usr/bin/env python3
"""Passive broker probe.

Connects with the same runtime the server uses, subscribes to every
telemetry topic and prints each message next to the fragment it decodes
to. Use it to check what the firmware is actually publishing.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys
import time
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from uavlink._mqtt import BrokerLinkState, BrokerMessage, BrokerRuntime  # noqa: E402
from uavlink.config import BrokerSettings  # noqa: E402
from uavlink.transports.broker import decode_topic_message  # noqa: E402


async def _run(args: argparse.Namespace) -> int:
    settings = BrokerSettings(url=args.broker, client_id=args.client_id)

    def on_message(message: BrokerMessage) -> None:
        fragment = decode_topic_message(message.topic, message.payload, settings.topics)
        stamp = time.strftime("%H:%M:%S")
        retained = " (retained)" if message.retain else ""
        print(f"{stamp} {message.topic}{retained}: {message.payload!r} -> {json.dumps(fragment)}")

    def on_state(state: BrokerLinkState) -> None:
        print(f"-- link {state.value}", file=sys.stderr)

    runtime = BrokerRuntime(settings, on_message=on_message, on_state_change=on_state)
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    runtime.start()
    try:
        if args.duration:
            try:
                await asyncio.wait_for(stop.wait(), timeout=args.duration)
            except TimeoutError:
                pass
        else:
            await stop.wait()
    finally:
        await runtime.stop()
    print(json.dumps(runtime.stats(), indent=2), file=sys.stderr)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Print decoded broker telemetry")
    parser.add_argument("--broker", default=BrokerSettings().url, help="Broker URL")
    parser.add_argument("--client-id", default="uavlink-probe")
    parser.add_argument("--duration", type=float, default=0.0, help="Seconds to listen (0 = until Ctrl-C)")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
"""Device emulator for a running uavlink server.

Posts plausible telemetry to ``POST /telemetry`` with an incrementing
packet number, the way the flight controller firmware does. Useful for
exercising the server without hardware:

- ``--repeat`` re-sends every packet N extra times to exercise dedup,
- ``--bad-every`` injects an out-of-range voltage every N packets,
- ``--command`` sends one operator command and exits.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import math
import random
import sys
import time
from pathlib import Path
from typing import Any

import aiohttp

_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from uavlink._constants import DEVICE_ID_HEADER  # noqa: E402


def _packet(counter: int, device_id: str, rng: random.Random) -> dict[str, Any]:
    angle = counter * 0.05
    return {
        "deviceId": device_id,
        "packetNumber": counter,
        "timestamp": int(time.time() * 1000),
        "voltage": round(max(10.5, 16.4 - counter * 0.002) + rng.uniform(-0.05, 0.05), 2),
        "current": round(2.0 + rng.uniform(0, 0.5), 2),
        "power": round(32.0 + rng.uniform(-2, 2), 2),
        "latitude": round(-5.3584 + math.cos(angle) * 0.0008, 7),
        "longitude": round(105.3117 + math.sin(angle) * 0.0008, 7),
        "altitude": round(120 + math.sin(angle) * 10, 1),
        "speed": round(12 + rng.uniform(-1, 1), 1),
        "signalStrength": -55 - rng.randint(0, 15),
        "satellites": rng.randint(7, 12),
    }


async def _post(session: aiohttp.ClientSession, url: str, device_id: str, body: dict[str, Any]) -> None:
    async with session.post(url, json=body, headers={DEVICE_ID_HEADER: device_id}) as response:
        payload = await response.json(content_type=None)
        print(f"{response.status} packet={body.get('packetNumber')} -> {json.dumps(payload)}")


async def _run(args: argparse.Namespace) -> int:
    base = args.url.rstrip("/")
    rng = random.Random(args.seed)
    timeout = aiohttp.ClientTimeout(total=10)
    async with aiohttp.ClientSession(timeout=timeout) as session:
        if args.command:
            body: dict[str, Any] = {"command": args.command}
            if args.action:
                body["action"] = args.action
            async with session.post(f"{base}/command", json=body) as response:
                print(response.status, json.dumps(await response.json(content_type=None), indent=2))
            return 0

        for counter in range(1, args.count + 1):
            body = _packet(counter, args.device_id, rng)
            if args.bad_every and counter % args.bad_every == 0:
                body["voltage"] = 999
            try:
                await _post(session, f"{base}/telemetry", args.device_id, body)
                for _ in range(args.repeat):
                    await _post(session, f"{base}/telemetry", args.device_id, body)
            except aiohttp.ClientError as exc:
                print(f"request failed: {exc}", file=sys.stderr)
            await asyncio.sleep(args.interval)
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Emulate a UAV posting telemetry to uavlink")
    parser.add_argument("--url", default="http://127.0.0.1:3003", help="Server base URL")
    parser.add_argument("--device-id", default="emulator-1")
    parser.add_argument("--count", type=int, default=30, help="Packets to send")
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between packets")
    parser.add_argument("--repeat", type=int, default=0, help="Extra copies of each packet")
    parser.add_argument("--bad-every", type=int, default=0, help="Send an out-of-range packet every N packets")
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--command", choices=["relay", "emergency", "reboot", "status"])
    parser.add_argument("--action", choices=["on", "off", "emergency_on", "emergency_off"])
    return asyncio.run(_run(parser.parse_args()))


if __name__ == "__main__":
    raise SystemExit(main())

#!/usr/bin/env python3
"""Publish synthetic position reports for one vehicle.

The vehicle moves along a straight line from ``--start`` with a constant
step per report, which is handy for watching the filter, the matcher and
the traffic levels react on a running tracker.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import random
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyvtrack import TrackerConfig, VehicleTracker  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Publish synthetic vehicle location reports.")
    parser.add_argument("vehicle_id", help="Vehicle id, e.g. esp32-01.")
    parser.add_argument("--host", help="MQTT broker host (overrides VTRACK_BROKER_HOST).")
    parser.add_argument("--port", type=int, help="MQTT broker port (overrides VTRACK_BROKER_PORT).")
    parser.add_argument("--start", type=float, nargs=2, default=(10.0, 10.0), metavar=("X", "Y"))
    parser.add_argument("--step", type=float, nargs=2, default=(1.0, 0.0), metavar=("DX", "DY"))
    parser.add_argument("--count", type=int, default=10, help="Number of reports to publish.")
    parser.add_argument("--interval", type=float, default=1.0, help="Seconds between reports.")
    parser.add_argument("--jitter", type=float, default=0.0, help="Uniform noise added to each axis.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


async def _publish(args: argparse.Namespace) -> int:
    broker: dict[str, object] = {"client_id": f"pyvtrack-publisher-{args.vehicle_id}"}
    if args.host:
        broker["host"] = args.host
    if args.port:
        broker["port"] = args.port
    config = TrackerConfig.from_env(broker=broker)

    x, y = args.start
    dx, dy = args.step
    async with VehicleTracker(config) as tracker:
        await tracker.start()
        for index in range(args.count):
            noise_x = random.uniform(-args.jitter, args.jitter) if args.jitter else 0.0
            noise_y = random.uniform(-args.jitter, args.jitter) if args.jitter else 0.0
            px = x + dx * index + noise_x
            py = y + dy * index + noise_y
            topic = tracker.publish_test_location(args.vehicle_id, x=px, y=py)
            print(f"[publish] {topic} #{index + 1}: ({px:.2f}, {py:.2f})")
            await asyncio.sleep(args.interval)
        await tracker.stop()
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_publish(args))
    except Exception as exc:  # pragma: no cover - network/system interaction
        print(f"[publish] Failed: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())

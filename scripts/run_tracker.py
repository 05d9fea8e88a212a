#!/usr/bin/env python3
"""Run the vehicle tracker until Ctrl+C.

Configuration comes from ``VTRACK_*`` environment variables; the flags
below override the most common ones. Road nodes can be preloaded from a
JSON file (a list of node objects) when running with in-memory stores.
"""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import json
import logging
import signal
import sys
from pathlib import Path

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyvtrack import RoadNode, TrackerConfig, VehicleTracker  # noqa: E402
from pyvtrack.models.results import ProcessingOutcome  # noqa: E402
from pyvtrack.state.store import InMemoryRoadNodeStore  # noqa: E402

_LOG = logging.getLogger("run_tracker")


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Consume vehicle telemetry and maintain state.")
    parser.add_argument("--host", help="MQTT broker host (overrides VTRACK_BROKER_HOST).")
    parser.add_argument("--port", type=int, help="MQTT broker port (overrides VTRACK_BROKER_PORT).")
    parser.add_argument("--store-url", help="Persistence service base URL (default: in-memory).")
    parser.add_argument(
        "--nodes",
        type=Path,
        help="JSON file with road nodes to preload into the in-memory store.",
    )
    parser.add_argument(
        "--duration",
        type=int,
        default=0,
        help="Maximum runtime in seconds (0 = run until Ctrl+C).",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logs.")
    return parser.parse_args()


def _build_config(args: argparse.Namespace) -> TrackerConfig:
    broker: dict[str, object] = {}
    if args.host:
        broker["host"] = args.host
    if args.port:
        broker["port"] = args.port
    overrides: dict[str, object] = {"broker": broker}
    if args.store_url:
        overrides["store"] = {"base_url": args.store_url}
    return TrackerConfig.from_env(**overrides)


def _load_nodes(path: Path) -> list[RoadNode]:
    data = json.loads(path.read_text(encoding="utf-8"))
    return [RoadNode.model_validate(item) for item in data]


def _print_outcome(outcome: ProcessingOutcome) -> None:
    if outcome.dropped:
        print(f"[tracker] {outcome.vehicle_id}: dropped ({outcome.filtered.reason})")  # type: ignore[union-attr]
        return
    position = outcome.position
    traffic = f" traffic={outcome.traffic.level}" if outcome.traffic is not None else ""
    if position is not None:
        print(
            f"[tracker] {outcome.vehicle_id}: pos=({position.x:.1f}, {position.y:.1f}) "
            f"speed={outcome.speed or 0.0:.2f}{traffic}"
        )


async def _run(args: argparse.Namespace) -> int:
    config = _build_config(args)
    road_nodes = None
    if args.nodes is not None and not config.store.base_url:
        nodes = _load_nodes(args.nodes)
        road_nodes = InMemoryRoadNodeStore(nodes)
        print(f"[tracker] Loaded {len(nodes)} road nodes from {args.nodes}")

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)

    async with VehicleTracker(config, road_nodes=road_nodes, on_outcome=_print_outcome) as tracker:
        await tracker.start()
        print(f"[tracker] Listening on {config.broker.host}:{config.broker.port} {config.broker.telemetry_topic}")
        timeout = args.duration if args.duration > 0 else None
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        await tracker.stop()
        await tracker.drain()
        print(f"[tracker] Dropped by full queues: {tracker.dispatcher.dropped}")
    return 0


def _main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_run(args))
    except Exception as exc:  # pragma: no cover - network/system interaction
        print(f"[tracker] Failed: {exc}", file=sys.stderr)
        _LOG.debug("Tracker failure", exc_info=True)
        return 2


if __name__ == "__main__":
    raise SystemExit(_main())

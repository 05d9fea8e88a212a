from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from pyvtrack.config import TrafficSettings
from pyvtrack.models.road import RoadNode, TrafficLevel
from pyvtrack.processing.traffic import TrafficAggregator, classify_density
from pyvtrack.state.store import InMemoryRoadNodeStore, InMemoryVehicleStore

_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _ten_node_road() -> list[RoadNode]:
    return [RoadNode(id=i + 1, x=float(i * 10), y=0.0, road_id="R1") for i in range(10)]


async def _park(vehicles: InMemoryVehicleStore, vehicle_id: str, x: float, y: float) -> None:
    await vehicles.upsert_state(vehicle_id, {"x": x, "y": y})


@pytest.mark.parametrize(
    ("density", "expected"),
    [
        (0.0, TrafficLevel.SMOOTH),
        (0.09, TrafficLevel.SMOOTH),
        (0.1, TrafficLevel.NORMAL),
        (0.29, TrafficLevel.NORMAL),
        (0.3, TrafficLevel.CONGESTED),
        (2.0, TrafficLevel.CONGESTED),
    ],
)
def test_classify_density(density: float, expected: TrafficLevel) -> None:
    assert classify_density(density) == expected


@pytest.mark.asyncio
async def test_road_without_nodes_is_unknown_and_writes_nothing() -> None:
    nodes = InMemoryRoadNodeStore(_ten_node_road())
    aggregator = TrafficAggregator(nodes, InMemoryVehicleStore(), clock=_Clock(_NOW))

    state = await aggregator.recompute("missing-road")

    assert state.level == TrafficLevel.UNKNOWN
    assert state.node_count == 0
    assert state.updated_at is None
    assert all(nodes.get(i + 1).traffic == TrafficLevel.UNKNOWN for i in range(10))  # type: ignore[union-attr]


@pytest.mark.asyncio
async def test_four_vehicles_on_ten_nodes_is_congested() -> None:
    clock = _Clock(_NOW)
    nodes = InMemoryRoadNodeStore(_ten_node_road(), clock=clock)
    vehicles = InMemoryVehicleStore(clock=clock)
    for i, x in enumerate((5.0, 25.0, 45.0, 85.0)):
        await _park(vehicles, f"car-{i}", x, 1.0)
    aggregator = TrafficAggregator(nodes, vehicles, clock=clock)

    state = await aggregator.recompute("R1")

    assert state.vehicle_count == 4
    assert state.node_count == 10
    assert state.density == pytest.approx(0.4)
    assert state.level == TrafficLevel.CONGESTED
    assert state.updated_at == _NOW
    for i in range(10):
        node = nodes.get(i + 1)
        assert node is not None
        assert node.traffic == TrafficLevel.CONGESTED
        assert node.updated_at == _NOW


@pytest.mark.asyncio
async def test_stale_vehicles_are_not_counted() -> None:
    clock = _Clock(_NOW - timedelta(seconds=120))
    nodes = InMemoryRoadNodeStore(_ten_node_road())
    vehicles = InMemoryVehicleStore(clock=clock)
    await _park(vehicles, "car-old", 20.0, 0.0)
    clock.now = _NOW
    await _park(vehicles, "car-new", 30.0, 0.0)
    aggregator = TrafficAggregator(nodes, vehicles, clock=clock)

    state = await aggregator.recompute("R1")

    assert state.vehicle_count == 1
    assert state.level == TrafficLevel.NORMAL


@pytest.mark.asyncio
async def test_tolerance_expands_road_bounding_box() -> None:
    clock = _Clock(_NOW)
    nodes = InMemoryRoadNodeStore(_ten_node_road())
    vehicles = InMemoryVehicleStore(clock=clock)
    await _park(vehicles, "near", 95.0, 8.0)
    await _park(vehicles, "far", 120.0, 0.0)
    await _park(vehicles, "beside", 50.0, 25.0)
    aggregator = TrafficAggregator(nodes, vehicles, TrafficSettings(tolerance=10.0), clock=clock)

    state = await aggregator.recompute("R1")

    assert state.vehicle_count == 1
    assert state.level == TrafficLevel.NORMAL


@pytest.mark.asyncio
async def test_recompute_overwrites_previous_level() -> None:
    clock = _Clock(_NOW)
    nodes = InMemoryRoadNodeStore(_ten_node_road())
    vehicles = InMemoryVehicleStore(clock=clock)
    for i in range(4):
        await _park(vehicles, f"car-{i}", 10.0 * i, 0.0)
    aggregator = TrafficAggregator(nodes, vehicles, clock=clock)
    assert (await aggregator.recompute("R1")).level == TrafficLevel.CONGESTED

    clock.now = _NOW + timedelta(minutes=5)
    state = await aggregator.recompute("R1")

    assert state.level == TrafficLevel.SMOOTH
    assert nodes.get(1).traffic == TrafficLevel.SMOOTH  # type: ignore[union-attr]

from __future__ import annotations

import math
from datetime import UTC, datetime

import pytest

from pyvtrack.config import MatcherSettings
from pyvtrack.exceptions import StoreError
from pyvtrack.ingestion.pipeline import TelemetryPipeline
from pyvtrack.models.results import DropReason, FilterDrop, MatchResult, NoMatch, Position
from pyvtrack.models.road import RoadNode, TrafficLevel
from pyvtrack.models.telemetry import RawReport
from pyvtrack.models.vehicle import HistoryRecord
from pyvtrack.processing.filter import LocationFilter
from pyvtrack.processing.matcher import MapMatcher
from pyvtrack.processing.traffic import TrafficAggregator
from pyvtrack.state.store import InMemoryRoadNodeStore, InMemoryVehicleStore

_NOW = datetime(2026, 1, 1, 12, 0, tzinfo=UTC)
_T0 = 1_767_268_800.0


def _clock() -> datetime:
    return _NOW


def _report(x: float, y: float, t: float, *, vehicle_id: str = "esp32-01", valid: bool = True) -> RawReport:
    return RawReport(vehicle_id=vehicle_id, valid=valid, x=x, y=y, timestamp=_T0 + t, direction="east")


def _pipeline(
    nodes: list[RoadNode] | None = None,
    *,
    vehicles: InMemoryVehicleStore | None = None,
) -> tuple[TelemetryPipeline, InMemoryRoadNodeStore, InMemoryVehicleStore]:
    road_nodes = InMemoryRoadNodeStore(nodes or [], clock=_clock)
    vehicle_store = vehicles if vehicles is not None else InMemoryVehicleStore(clock=_clock)
    matcher = MapMatcher(road_nodes, MatcherSettings())
    pipeline = TelemetryPipeline(
        location_filter=LocationFilter(),
        matcher=matcher,
        vehicles=vehicle_store,
        aggregator=TrafficAggregator(road_nodes, vehicle_store, clock=_clock),
    )
    return pipeline, road_nodes, vehicle_store


def _straight_road() -> list[RoadNode]:
    return [RoadNode(id=i + 1, x=float(i * 10), y=0.0, road_id="R1") for i in range(3)]


class _FailingHistoryStore(InMemoryVehicleStore):
    async def append_history(self, record: HistoryRecord) -> None:
        raise StoreError("history unavailable", status_code=503, endpoint="/history")


class _FailingStateStore(InMemoryVehicleStore):
    async def upsert_state(self, vehicle_id, fields):  # type: ignore[no-untyped-def]
        raise StoreError("state unavailable", status_code=503, endpoint="/vehicles")


@pytest.mark.asyncio
async def test_every_report_is_recorded_in_history() -> None:
    pipeline, _, vehicles = _pipeline()

    outcomes = [
        await pipeline.process(_report(10, 10, 0)),
        await pipeline.process(_report(11, 10, 1, valid=False)),
        await pipeline.process(_report(510, 10, 2)),
        await pipeline.process(_report(0, 0, 3)),
    ]

    assert vehicles.history_count("esp32-01") == 4
    assert all(outcome.history_recorded for outcome in outcomes)
    assert [outcome.dropped for outcome in outcomes] == [False, True, True, True]


@pytest.mark.asyncio
async def test_implausible_jump_leaves_state_unchanged() -> None:
    pipeline, _, vehicles = _pipeline()
    await pipeline.process(_report(10, 10, 0))
    before = await vehicles.get_state("esp32-01")

    outcome = await pipeline.process(_report(510, 10, 1))

    after = await vehicles.get_state("esp32-01")
    assert isinstance(outcome.filtered, FilterDrop)
    assert outcome.filtered.reason == DropReason.IMPLAUSIBLE_SPEED
    assert outcome.state_updated is False
    assert before is not None and after is not None
    assert (after.x, after.y) == (before.x, before.y) == (10.0, 10.0)
    assert vehicles.history_count("esp32-01") == 2


@pytest.mark.asyncio
async def test_no_match_uses_filtered_position() -> None:
    pipeline, _, vehicles = _pipeline()

    outcome = await pipeline.process(_report(10, 10, 0))

    assert isinstance(outcome.match, NoMatch)
    assert outcome.position == Position(10, 10)
    assert outcome.traffic is None
    state = await vehicles.get_state("esp32-01")
    assert state is not None
    assert state.direction == "east"
    assert state.speed == 0.0


@pytest.mark.asyncio
async def test_reliable_match_snaps_and_updates_traffic() -> None:
    pipeline, road_nodes, vehicles = _pipeline(_straight_road())

    outcome = await pipeline.process(_report(4, 3, 0))

    assert isinstance(outcome.match, MatchResult)
    assert outcome.match.confidence == pytest.approx(0.85)
    assert outcome.position is not None
    assert outcome.position.x == pytest.approx(4.0)
    assert outcome.position.y == pytest.approx(0.0)
    state = await vehicles.get_state("esp32-01")
    assert state is not None
    assert (state.x, state.y) == pytest.approx((4.0, 0.0))

    # One recent vehicle over three nodes.
    assert outcome.traffic is not None
    assert outcome.traffic.level == TrafficLevel.CONGESTED
    node = road_nodes.get(1)
    assert node is not None
    assert node.traffic == TrafficLevel.CONGESTED


@pytest.mark.asyncio
async def test_low_confidence_match_falls_back_and_skips_traffic() -> None:
    pipeline, road_nodes, vehicles = _pipeline(_straight_road())

    outcome = await pipeline.process(_report(4, 18, 0))

    assert isinstance(outcome.match, MatchResult)
    assert outcome.match.confidence < 0.3
    assert outcome.position == Position(4, 18)
    assert outcome.traffic is None
    state = await vehicles.get_state("esp32-01")
    assert state is not None
    assert (state.x, state.y) == (4.0, 18.0)
    node = road_nodes.get(1)
    assert node is not None
    assert node.traffic == TrafficLevel.UNKNOWN


@pytest.mark.asyncio
async def test_speed_is_measured_from_prior_valid_record() -> None:
    pipeline, _, vehicles = _pipeline()

    first = await pipeline.process(_report(10, 10, 0))
    await pipeline.process(_report(12, 10, 1, valid=False))
    second = await pipeline.process(_report(13, 14, 2))

    assert first.speed == 0.0
    assert second.position is not None
    expected = math.hypot(second.position.x - 10, second.position.y - 10) / 2
    assert second.speed == pytest.approx(expected)
    assert second.speed > 0
    state = await vehicles.get_state("esp32-01")
    assert state is not None
    assert state.speed == pytest.approx(expected)


@pytest.mark.asyncio
async def test_history_failure_does_not_block_state_update() -> None:
    pipeline, _, vehicles = _pipeline(vehicles=_FailingHistoryStore(clock=_clock))

    outcome = await pipeline.process(_report(10, 10, 0))

    assert outcome.history_recorded is False
    assert outcome.state_updated is True
    assert await vehicles.get_state("esp32-01") is not None


@pytest.mark.asyncio
async def test_state_failure_still_records_history() -> None:
    pipeline, _, vehicles = _pipeline(vehicles=_FailingStateStore(clock=_clock))

    outcome = await pipeline.process(_report(10, 10, 0))

    assert outcome.history_recorded is True
    assert outcome.state_updated is False
    assert vehicles.history_count("esp32-01") == 1

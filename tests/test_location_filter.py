from __future__ import annotations

import random
import statistics

import pytest

from pyvtrack.config import FilterSettings
from pyvtrack.models.results import DropReason, FilterDrop, Position
from pyvtrack.models.telemetry import RawReport
from pyvtrack.processing.filter import LocationFilter


def _report(
    x: float,
    y: float,
    t: float,
    *,
    vehicle_id: str = "esp32-01",
    valid: bool = True,
    signal: int | None = None,
) -> RawReport:
    return RawReport(vehicle_id=vehicle_id, valid=valid, x=x, y=y, timestamp=t, signal_strength=signal)


def test_first_report_is_returned_unchanged() -> None:
    location_filter = LocationFilter()

    result = location_filter.process(_report(12.5, 7.25, 0.0))

    assert result == Position(12.5, 7.25)
    assert len(location_filter.window("esp32-01")) == 1


@pytest.mark.parametrize(
    ("report", "reason"),
    [
        (_report(5, 5, 0.0, valid=False), DropReason.INVALID_FLAG),
        (_report(0, 0, 0.0), DropReason.NO_FIX),
        (_report(5, 5, 0.0, signal=-120), DropReason.WEAK_SIGNAL),
    ],
)
def test_validity_gate(report: RawReport, reason: DropReason) -> None:
    location_filter = LocationFilter()

    result = location_filter.process(report)

    assert isinstance(result, FilterDrop)
    assert result.reason == reason
    assert location_filter.window("esp32-01") == ()


def test_missing_signal_strength_passes() -> None:
    result = LocationFilter().process(_report(5, 5, 0.0, signal=None))

    assert result == Position(5, 5)


def test_signal_at_floor_passes() -> None:
    result = LocationFilter().process(_report(5, 5, 0.0, signal=-100))

    assert result == Position(5, 5)


def test_velocity_gate_drops_jump_and_keeps_window() -> None:
    location_filter = LocationFilter()
    location_filter.process(_report(10, 10, 0.0))

    result = location_filter.process(_report(510, 10, 1.0))

    assert isinstance(result, FilterDrop)
    assert result.reason == DropReason.IMPLAUSIBLE_SPEED
    assert len(location_filter.window("esp32-01")) == 1
    assert location_filter.last_position("esp32-01") == Position(10, 10)


def test_non_increasing_timestamp_is_dropped() -> None:
    location_filter = LocationFilter()
    location_filter.process(_report(10, 10, 5.0))

    same = location_filter.process(_report(10.5, 10, 5.0))
    older = location_filter.process(_report(10.5, 10, 4.0))

    assert isinstance(same, FilterDrop)
    assert same.reason == DropReason.NON_MONOTONIC_TIME
    assert isinstance(older, FilterDrop)
    assert older.reason == DropReason.NON_MONOTONIC_TIME


def test_smoothing_and_moving_average() -> None:
    location_filter = LocationFilter()
    location_filter.process(_report(10, 10, 0.0))

    result = location_filter.process(_report(21, 10, 1.0))

    # Smoothed: 10 + (1/11) * 11 = 11; averaged with the previous 10.
    assert isinstance(result, Position)
    assert result.x == pytest.approx(10.5)
    assert result.y == pytest.approx(10.0)


def test_moving_average_uses_at_most_window_points() -> None:
    location_filter = LocationFilter(FilterSettings(process_noise=1.0, measurement_noise=0.0, average_window=2))
    location_filter.process(_report(10, 10, 0.0))
    location_filter.process(_report(12, 10, 1.0))

    result = location_filter.process(_report(14, 10, 2.0))

    # Gain 1 keeps the raw point; averaged with the last emitted x of 11 only.
    assert isinstance(result, Position)
    assert result.x == pytest.approx((14 + 11) / 2)


def test_window_is_bounded() -> None:
    location_filter = LocationFilter()
    for i in range(15):
        location_filter.process(_report(5, 5, float(i)))

    window = location_filter.window("esp32-01")

    assert len(window) == 10
    assert window[0].timestamp == 5.0
    assert window[-1].timestamp == 14.0


def test_vehicles_are_independent() -> None:
    location_filter = LocationFilter()
    location_filter.process(_report(10, 10, 0.0, vehicle_id="a"))

    result = location_filter.process(_report(400, 400, 0.5, vehicle_id="b"))

    assert result == Position(400, 400)
    assert sorted(location_filter.tracked_vehicles()) == ["a", "b"]


def test_forget_resets_vehicle() -> None:
    location_filter = LocationFilter()
    location_filter.process(_report(10, 10, 0.0))

    assert location_filter.forget("esp32-01") is True
    assert location_filter.forget("esp32-01") is False
    assert location_filter.process(_report(510, 10, 1.0)) == Position(510, 10)


def test_stationary_target_variance_is_reduced() -> None:
    rng = random.Random(42)
    location_filter = LocationFilter()
    raw_x: list[float] = []
    raw_y: list[float] = []
    out_x: list[float] = []
    out_y: list[float] = []

    for i in range(500):
        x = 100.0 + rng.uniform(-1.0, 1.0)
        y = 100.0 + rng.uniform(-1.0, 1.0)
        raw_x.append(x)
        raw_y.append(y)
        result = location_filter.process(_report(x, y, float(i)))
        assert isinstance(result, Position)
        out_x.append(result.x)
        out_y.append(result.y)

    assert statistics.pvariance(out_x[10:]) < statistics.pvariance(raw_x[10:])
    assert statistics.pvariance(out_y[10:]) < statistics.pvariance(raw_y[10:])

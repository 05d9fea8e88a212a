"""Per-vehicle location denoising.

Each report passes four stages; any of the gates can reject it:

1. validity gate (device flag, ``(0, 0)`` no-fix sentinel, signal floor)
2. fixed-gain smoothing towards the raw point, ``K = Q / (Q + R)``
3. velocity-plausibility gate against the last accepted point
4. moving average over the most recent emitted positions

Accepted reports are committed to a bounded per-vehicle window. The
window lives in process memory only; after a restart the first report
of every vehicle is treated as its first observation.

:meth:`LocationFilter.process` never awaits, so callers that serialize
reports per vehicle on one event loop get a consistent window without
additional locking.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass

from pyvtrack.config import FilterSettings
from pyvtrack.models.results import DropReason, FilterDrop, Position
from pyvtrack.models.telemetry import RawReport

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class _AcceptedPoint:
    report: RawReport
    position: Position


class LocationFilter:
    """Stateful denoiser keyed by vehicle id."""

    def __init__(self, settings: FilterSettings | None = None) -> None:
        self._settings = settings or FilterSettings()
        self._windows: dict[str, deque[_AcceptedPoint]] = {}

    @property
    def settings(self) -> FilterSettings:
        return self._settings

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def check_validity(self, report: RawReport) -> FilterDrop | None:
        if not report.valid:
            return FilterDrop(DropReason.INVALID_FLAG)
        if report.x == 0 and report.y == 0:
            return FilterDrop(DropReason.NO_FIX)
        if report.signal_strength is not None and report.signal_strength < self._settings.signal_floor:
            return FilterDrop(DropReason.WEAK_SIGNAL, f"signal={report.signal_strength}")
        return None

    def smooth(self, report: RawReport, last: Position | None) -> Position:
        if last is None:
            return Position(report.x, report.y)
        gain = self._settings.gain
        return Position(
            last.x + gain * (report.x - last.x),
            last.y + gain * (report.y - last.y),
        )

    def check_velocity(self, report: RawReport, smoothed: Position, last: _AcceptedPoint | None) -> FilterDrop | None:
        if last is None:
            return None
        elapsed = report.timestamp - last.report.timestamp
        if elapsed <= 0:
            return FilterDrop(DropReason.NON_MONOTONIC_TIME, f"elapsed={elapsed:.3f}s")
        speed = smoothed.distance_to(last.position) / elapsed
        if speed > self._settings.max_speed:
            return FilterDrop(DropReason.IMPLAUSIBLE_SPEED, f"speed={speed:.2f}")
        return None

    def moving_average(self, smoothed: Position, window: deque[_AcceptedPoint] | None) -> Position:
        previous = self._settings.average_window - 1
        recent = list(window)[-previous:] if window and previous > 0 else []
        if not recent:
            return smoothed
        count = len(recent) + 1
        return Position(
            (smoothed.x + sum(point.position.x for point in recent)) / count,
            (smoothed.y + sum(point.position.y for point in recent)) / count,
        )

    # ------------------------------------------------------------------
    # Pipeline entry point
    # ------------------------------------------------------------------

    def process(self, report: RawReport) -> Position | FilterDrop:
        """Run all stages for *report* and commit it on success."""
        drop = self.check_validity(report)
        if drop is not None:
            return drop

        window = self._windows.get(report.vehicle_id)
        last = window[-1] if window else None

        smoothed = self.smooth(report, last.position if last is not None else None)

        drop = self.check_velocity(report, smoothed, last)
        if drop is not None:
            return drop

        position = self.moving_average(smoothed, window)
        self._commit(report, position)
        return position

    def _commit(self, report: RawReport, position: Position) -> None:
        window = self._windows.get(report.vehicle_id)
        if window is None:
            window = deque(maxlen=self._settings.history_size)
            self._windows[report.vehicle_id] = window
        window.append(_AcceptedPoint(report=report, position=position))

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def window(self, vehicle_id: str) -> tuple[RawReport, ...]:
        """Raw reports currently held for *vehicle_id*, oldest first."""
        window = self._windows.get(vehicle_id)
        if not window:
            return ()
        return tuple(point.report for point in window)

    def last_position(self, vehicle_id: str) -> Position | None:
        window = self._windows.get(vehicle_id)
        return window[-1].position if window else None

    def tracked_vehicles(self) -> list[str]:
        return list(self._windows)

    def forget(self, vehicle_id: str) -> bool:
        """Discard the window of *vehicle_id*; its next report starts fresh."""
        removed = self._windows.pop(vehicle_id, None) is not None
        if removed:
            _logger.debug("[%s] Filter window cleared", vehicle_id)
        return removed

"""Report processing pipeline.

One normalized report flows through:

1. history append (always, before any gate)
2. location filter (may drop the report)
3. map matching (advisory; low confidence falls back to the filtered point)
4. vehicle state upsert with the implied speed
5. traffic recomputation for the matched road

Persistence stages are independent: a failure is logged and the stages
that already completed are kept. Nothing is retried.

Reports for the same vehicle must not be processed concurrently; see
:class:`pyvtrack.ingestion.dispatch.KeyedDispatcher`.
"""

from __future__ import annotations

import logging

from pyvtrack.config import MatcherSettings
from pyvtrack.models.results import FilterDrop, MatchResult, NoMatch, Position, ProcessingOutcome
from pyvtrack.models.road import RoadTrafficState
from pyvtrack.models.telemetry import RawReport
from pyvtrack.models.vehicle import HistoryRecord
from pyvtrack.processing.filter import LocationFilter
from pyvtrack.processing.matcher import MapMatcher
from pyvtrack.processing.traffic import TrafficAggregator
from pyvtrack.state.policy import compute_speed
from pyvtrack.state.store import VehicleStore

_logger = logging.getLogger(__name__)


class TelemetryPipeline:
    def __init__(
        self,
        *,
        location_filter: LocationFilter,
        matcher: MapMatcher,
        vehicles: VehicleStore,
        aggregator: TrafficAggregator,
        settings: MatcherSettings | None = None,
    ) -> None:
        self._filter = location_filter
        self._matcher = matcher
        self._vehicles = vehicles
        self._aggregator = aggregator
        self._settings = settings or matcher.settings

    @property
    def location_filter(self) -> LocationFilter:
        return self._filter

    async def process(self, report: RawReport) -> ProcessingOutcome:
        vehicle_id = report.vehicle_id

        # Read before appending so the current report is never its own predecessor.
        prior: HistoryRecord | None = None
        try:
            prior = await self._vehicles.latest_history(vehicle_id, valid_only=True)
        except Exception:
            _logger.warning("[%s] Failed to read latest history; speed will be 0", vehicle_id, exc_info=True)

        history_recorded = await self._append_history(report)

        filtered = self._filter.process(report)
        if isinstance(filtered, FilterDrop):
            _logger.debug("[%s] Filtered out (%s %s)", vehicle_id, filtered.reason, filtered.detail)
            return ProcessingOutcome(vehicle_id=vehicle_id, history_recorded=history_recorded, filtered=filtered)

        match = await self._match(vehicle_id, filtered)
        reliable = isinstance(match, MatchResult) and match.confidence >= self._settings.min_confidence
        if isinstance(match, MatchResult) and reliable:
            position = match.position
            _logger.debug(
                "[%s] Matched: confidence=%.2f road=%s pos=(%.1f, %.1f)",
                vehicle_id,
                match.confidence,
                match.road_id or "none",
                position.x,
                position.y,
            )
        else:
            position = filtered
            confidence = match.confidence if isinstance(match, MatchResult) else 0.0
            _logger.debug("[%s] Low confidence: %.2f, using filtered position", vehicle_id, confidence)

        speed = compute_speed(position, report.timestamp, prior)
        state_updated = await self._upsert_state(report, position, speed)

        traffic: RoadTrafficState | None = None
        if isinstance(match, MatchResult) and reliable and match.road_id:
            traffic = await self._recompute_traffic(match.road_id)

        return ProcessingOutcome(
            vehicle_id=vehicle_id,
            history_recorded=history_recorded,
            filtered=filtered,
            match=match,
            position=position,
            speed=speed,
            state_updated=state_updated,
            traffic=traffic,
        )

    async def _append_history(self, report: RawReport) -> bool:
        try:
            await self._vehicles.append_history(HistoryRecord.from_report(report))
        except Exception:
            _logger.warning("[%s] Error saving location history", report.vehicle_id, exc_info=True)
            return False
        return True

    async def _match(self, vehicle_id: str, position: Position) -> MatchResult | NoMatch | None:
        try:
            return await self._matcher.match(position.x, position.y)
        except Exception:
            _logger.warning("[%s] Map matching failed; using filtered position", vehicle_id, exc_info=True)
            return None

    async def _upsert_state(self, report: RawReport, position: Position, speed: float) -> bool:
        try:
            await self._vehicles.upsert_state(
                report.vehicle_id,
                {
                    "x": position.x,
                    "y": position.y,
                    "vehicle_type": report.vehicle_type,
                    "direction": report.direction,
                    "distance": report.distance,
                    "angle": report.angle,
                    "speed": speed,
                },
            )
        except Exception:
            _logger.warning("[%s] Error updating vehicle position", report.vehicle_id, exc_info=True)
            return False
        return True

    async def _recompute_traffic(self, road_id: str) -> RoadTrafficState | None:
        try:
            return await self._aggregator.recompute(road_id)
        except Exception:
            _logger.warning("[Traffic] Error updating traffic status for road %s", road_id, exc_info=True)
            return None

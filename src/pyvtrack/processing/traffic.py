"""Per-road traffic density classification.

Every pass recomputes a road's level from scratch and overwrites the
``traffic`` field of all its nodes. Concurrent passes for the same road
are not coordinated; the last write wins.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta

from pyvtrack.config import TrafficSettings
from pyvtrack.models.road import RoadTrafficState, TrafficLevel
from pyvtrack.state.policy import BoundingBox
from pyvtrack.state.store import RoadNodeStore, VehicleStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def classify_density(density: float, settings: TrafficSettings | None = None) -> TrafficLevel:
    bands = settings or TrafficSettings()
    if density < bands.smooth_below:
        return TrafficLevel.SMOOTH
    if density < bands.normal_below:
        return TrafficLevel.NORMAL
    return TrafficLevel.CONGESTED


class TrafficAggregator:
    def __init__(
        self,
        nodes: RoadNodeStore,
        vehicles: VehicleStore,
        settings: TrafficSettings | None = None,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._nodes = nodes
        self._vehicles = vehicles
        self._settings = settings or TrafficSettings()
        self._clock = clock

    async def recompute(self, road_id: str) -> RoadTrafficState:
        """Classify *road_id* and write the level to all of its nodes.

        A road without ROAD nodes is UNKNOWN and nothing is written.
        """
        nodes = await self._nodes.nodes_for_road_ordered(road_id)
        bbox = BoundingBox.of_nodes(nodes)
        if bbox is None:
            _logger.debug("[Traffic] Road %s has no nodes", road_id)
            return RoadTrafficState(road_id=road_id, level=TrafficLevel.UNKNOWN)

        now = self._clock()
        vehicle_count = await self._vehicles.count_vehicles_in_area(
            bbox.expanded(self._settings.tolerance),
            updated_since=now - timedelta(seconds=self._settings.recency_window),
        )
        density = vehicle_count / len(nodes)
        level = classify_density(density, self._settings)

        await self._nodes.bulk_set_traffic([node.id for node in nodes], level)
        _logger.info(
            "[Traffic] Road %s: %s (%d vehicles, density: %.2f)",
            road_id,
            level,
            vehicle_count,
            density,
        )
        return RoadTrafficState(
            road_id=road_id,
            level=level,
            vehicle_count=vehicle_count,
            node_count=len(nodes),
            density=density,
            updated_at=now,
        )

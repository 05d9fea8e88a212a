"""Geometric map matching.

Snaps a filtered position onto the road grid:

- candidate search: ROAD nodes in a square around the point, nearest first
- no-match when there is no candidate or the nearest one is too far away
- refinement: projection onto every segment of the nearest node's road
- confidence: ``1 - distance / max_deviation`` clamped to ``[0, 1]``

The matcher holds no state between calls.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

from pyvtrack.config import MatcherSettings
from pyvtrack.models.results import MatchResult, NoMatch, NoMatchReason, Position
from pyvtrack.models.road import BlockCategory, RoadNode
from pyvtrack.state.policy import BoundingBox
from pyvtrack.state.store import RoadNodeStore

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Projection:
    """Closest point on a segment and its distance to the query point."""

    position: Position
    distance: float
    t: float


def project_to_segment(point: Position, start: Position, end: Position) -> Projection:
    """Project *point* onto the segment ``start -> end``.

    The parametric position ``t`` is clamped to ``[0, 1]`` so the result
    never leaves the segment. A degenerate segment projects onto *start*.
    """
    dx = end.x - start.x
    dy = end.y - start.y
    length_sq = dx * dx + dy * dy
    if length_sq == 0:
        return Projection(start, point.distance_to(start), 0.0)

    t = ((point.x - start.x) * dx + (point.y - start.y) * dy) / length_sq
    t = max(0.0, min(1.0, t))
    projected = Position(start.x + t * dx, start.y + t * dy)
    return Projection(projected, point.distance_to(projected), t)


def confidence_for(distance: float, max_deviation: float) -> float:
    return max(0.0, min(1.0, 1.0 - distance / max_deviation))


class MapMatcher:
    """Matches positions against a :class:`RoadNodeStore`."""

    def __init__(self, nodes: RoadNodeStore, settings: MatcherSettings | None = None) -> None:
        self._nodes = nodes
        self._settings = settings or MatcherSettings()

    @property
    def settings(self) -> MatcherSettings:
        return self._settings

    async def find_candidates(self, x: float, y: float) -> list[RoadNode]:
        """ROAD nodes around ``(x, y)`` sorted by ascending distance."""
        box = BoundingBox.around(x, y, self._settings.search_radius)
        nodes = await self._nodes.nodes_in_bounding_box(
            box.min_x,
            box.max_x,
            box.min_y,
            box.max_y,
            BlockCategory.ROAD,
            self._settings.max_candidates,
        )
        return sorted(nodes, key=lambda node: math.hypot(node.x - x, node.y - y))

    async def match(self, x: float, y: float) -> MatchResult | NoMatch:
        max_deviation = self._settings.max_deviation
        candidates = await self.find_candidates(x, y)
        if not candidates:
            return NoMatch(NoMatchReason.NO_CANDIDATES)

        point = Position(x, y)
        nearest = candidates[0]
        nearest_distance = point.distance_to(Position(nearest.x, nearest.y))
        if nearest_distance > max_deviation:
            return NoMatch(NoMatchReason.TOO_FAR, nearest_distance)

        matched = Position(nearest.x, nearest.y)
        final_distance = nearest_distance

        if nearest.road_id:
            best = await self._best_projection(point, nearest.road_id)
            if best is not None and best.distance < nearest_distance and best.distance <= max_deviation:
                matched = best.position
                final_distance = best.distance

        return MatchResult(
            position=matched,
            road_id=nearest.road_id,
            confidence=confidence_for(final_distance, max_deviation),
            nearest_node=nearest,
            distance=final_distance,
        )

    async def match_many(self, points: Sequence[Position]) -> list[MatchResult | NoMatch]:
        """Match a batch of points concurrently, preserving order."""
        return list(await asyncio.gather(*(self.match(point.x, point.y) for point in points)))

    async def _best_projection(self, point: Position, road_id: str) -> Projection | None:
        polyline = await self._nodes.nodes_for_road_ordered(road_id)
        if len(polyline) < 2:
            return None
        best: Projection | None = None
        for start, end in zip(polyline, polyline[1:]):
            projection = project_to_segment(point, Position(start.x, start.y), Position(end.x, end.y))
            if best is None or projection.distance < best.distance:
                best = projection
        _logger.debug(
            "Best projection on road=%s distance=%.2f",
            road_id,
            best.distance if best is not None else float("nan"),
        )
        return best

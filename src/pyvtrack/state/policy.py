"""Pure helpers shared by the stores, the pipeline and the aggregator.

Nothing in here touches persistence; inputs are already-normalized
models and plain numbers.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta

from pyvtrack.models.results import Position
from pyvtrack.models.road import RoadNode
from pyvtrack.models.vehicle import HistoryRecord


@dataclass(frozen=True, slots=True)
class BoundingBox:
    min_x: float
    max_x: float
    min_y: float
    max_y: float

    @classmethod
    def around(cls, x: float, y: float, half_width: float) -> BoundingBox:
        return cls(x - half_width, x + half_width, y - half_width, y + half_width)

    @classmethod
    def of_nodes(cls, nodes: Iterable[RoadNode]) -> BoundingBox | None:
        xs: list[float] = []
        ys: list[float] = []
        for node in nodes:
            xs.append(node.x)
            ys.append(node.y)
        if not xs:
            return None
        return cls(min(xs), max(xs), min(ys), max(ys))

    def expanded(self, margin: float) -> BoundingBox:
        return BoundingBox(self.min_x - margin, self.max_x + margin, self.min_y - margin, self.max_y + margin)

    def contains(self, x: float, y: float) -> bool:
        return self.min_x <= x <= self.max_x and self.min_y <= y <= self.max_y

    @property
    def center(self) -> Position:
        return Position((self.min_x + self.max_x) / 2, (self.min_y + self.max_y) / 2)


def compute_speed(position: Position, timestamp: float, prior: HistoryRecord | None) -> float:
    """Speed implied by moving from *prior* to *position*.

    Returns ``0.0`` when there is no prior record or the elapsed time is
    not positive, so the result is never negative.
    """
    if prior is None:
        return 0.0
    elapsed = timestamp - prior.timestamp
    if elapsed <= 0:
        return 0.0
    return math.hypot(position.x - prior.x, position.y - prior.y) / elapsed


def is_recent(updated_at: datetime, now: datetime, window_seconds: float) -> bool:
    return updated_at >= now - timedelta(seconds=window_seconds)

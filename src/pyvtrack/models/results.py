"""Outcome values passed between pipeline stages.

Each stage that can decline to produce a value returns an explicit
result type instead of a sentinel: the location filter yields
``Position | FilterDrop`` and the map matcher ``MatchResult | NoMatch``.
"""

from __future__ import annotations

import enum
import math
from dataclasses import dataclass

from pyvtrack.models.road import RoadNode, RoadTrafficState


@dataclass(frozen=True, slots=True)
class Position:
    x: float
    y: float

    def distance_to(self, other: Position) -> float:
        return math.hypot(self.x - other.x, self.y - other.y)


class DropReason(enum.StrEnum):
    INVALID_FLAG = "invalid_flag"
    NO_FIX = "no_fix"
    WEAK_SIGNAL = "weak_signal"
    NON_MONOTONIC_TIME = "non_monotonic_time"
    IMPLAUSIBLE_SPEED = "implausible_speed"


@dataclass(frozen=True, slots=True)
class FilterDrop:
    """The location filter rejected a report."""

    reason: DropReason
    detail: str = ""


class NoMatchReason(enum.StrEnum):
    NO_CANDIDATES = "no_candidates"
    TOO_FAR = "too_far"


@dataclass(frozen=True, slots=True)
class NoMatch:
    """The map matcher found no road point close enough."""

    reason: NoMatchReason
    nearest_distance: float | None = None


@dataclass(frozen=True, slots=True)
class MatchResult:
    """A position snapped onto the road network.

    ``distance`` is the deviation between the input point and
    ``position``; ``confidence`` is derived from it and lies in [0, 1].
    """

    position: Position
    road_id: str | None
    confidence: float
    nearest_node: RoadNode
    distance: float


@dataclass(frozen=True, slots=True)
class ProcessingOutcome:
    """Summary of one report's trip through the pipeline."""

    vehicle_id: str
    history_recorded: bool
    filtered: Position | FilterDrop
    match: MatchResult | NoMatch | None = None
    position: Position | None = None
    speed: float | None = None
    state_updated: bool = False
    traffic: RoadTrafficState | None = None

    @property
    def dropped(self) -> bool:
        return isinstance(self.filtered, FilterDrop)

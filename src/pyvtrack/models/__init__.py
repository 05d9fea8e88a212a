"""Data models for telemetry, road network and vehicle state."""

from pyvtrack.models._base import EpochDatetime, TrackerEnum, TrackerPayloadModel, parse_epoch_timestamp
from pyvtrack.models.results import (
    DropReason,
    FilterDrop,
    MatchResult,
    NoMatch,
    NoMatchReason,
    Position,
    ProcessingOutcome,
)
from pyvtrack.models.road import BlockCategory, RoadNode, RoadTrafficState, TrafficLevel
from pyvtrack.models.telemetry import RawReport, TelemetryPayload, VehicleType
from pyvtrack.models.vehicle import HistoryRecord, VehicleState

__all__ = [
    "BlockCategory",
    "DropReason",
    "EpochDatetime",
    "FilterDrop",
    "HistoryRecord",
    "MatchResult",
    "NoMatch",
    "NoMatchReason",
    "Position",
    "ProcessingOutcome",
    "RawReport",
    "RoadNode",
    "RoadTrafficState",
    "TelemetryPayload",
    "TrackerEnum",
    "TrackerPayloadModel",
    "TrafficLevel",
    "VehicleState",
    "VehicleType",
    "parse_epoch_timestamp",
]

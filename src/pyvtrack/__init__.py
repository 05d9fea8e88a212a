"""pyvtrack - Async vehicle telemetry denoising, map matching and traffic estimation."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("pyvtrack")
except PackageNotFoundError:
    __version__ = "0+local"
from pyvtrack.config import (
    BrokerSettings,
    DispatchSettings,
    FilterSettings,
    MatcherSettings,
    StoreSettings,
    TrackerConfig,
    TrafficSettings,
    UnitConversion,
)
from pyvtrack.exceptions import StoreError, TelemetryDecodeError, VtrackConfigError, VtrackError
from pyvtrack.models import (
    BlockCategory,
    DropReason,
    FilterDrop,
    HistoryRecord,
    MatchResult,
    NoMatch,
    NoMatchReason,
    Position,
    ProcessingOutcome,
    RawReport,
    RoadNode,
    RoadTrafficState,
    TrafficLevel,
    VehicleState,
    VehicleType,
)
from pyvtrack.tracker import VehicleTracker

__all__ = [
    "__version__",
    "BlockCategory",
    "BrokerSettings",
    "DispatchSettings",
    "DropReason",
    "FilterDrop",
    "FilterSettings",
    "HistoryRecord",
    "MatchResult",
    "MatcherSettings",
    "NoMatch",
    "NoMatchReason",
    "Position",
    "ProcessingOutcome",
    "RawReport",
    "RoadNode",
    "RoadTrafficState",
    "StoreError",
    "StoreSettings",
    "TelemetryDecodeError",
    "TrackerConfig",
    "TrafficLevel",
    "TrafficSettings",
    "UnitConversion",
    "VehicleState",
    "VehicleTracker",
    "VehicleType",
    "VtrackConfigError",
    "VtrackError",
]

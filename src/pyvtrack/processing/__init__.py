"""Processing layer.

Denoising, map matching and traffic aggregation. Components here take
normalized inputs and persistence collaborators; they never parse raw
payloads.
"""

from pyvtrack.processing.filter import LocationFilter
from pyvtrack.processing.matcher import MapMatcher, project_to_segment
from pyvtrack.processing.traffic import TrafficAggregator, classify_density

__all__ = [
    "LocationFilter",
    "MapMatcher",
    "TrafficAggregator",
    "classify_density",
    "project_to_segment",
]

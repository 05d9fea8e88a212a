"""Road network models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from pyvtrack.models._base import WIRE_MODEL_CONFIG, EpochDatetime, TrackerEnum


class BlockCategory(TrackerEnum):
    ROAD = "ROAD"
    BUILDING = "BUILDING"
    WATER = "WATER"
    UNKNOWN = "UNKNOWN"


class TrafficLevel(TrackerEnum):
    UNKNOWN = "UNKNOWN"
    SMOOTH = "SMOOTH"
    NORMAL = "NORMAL"
    CONGESTED = "CONGESTED"


class RoadNode(BaseModel):
    """A map grid node owned by the road configuration service."""

    model_config = WIRE_MODEL_CONFIG

    id: int
    x: float
    y: float
    road_id: str | None = None
    block: BlockCategory = BlockCategory.ROAD
    traffic: TrafficLevel = TrafficLevel.UNKNOWN
    updated_at: EpochDatetime | None = None

    @field_validator("block", mode="before")
    @classmethod
    def _coerce_block(cls, value: Any) -> BlockCategory:
        return BlockCategory(value)

    @field_validator("traffic", mode="before")
    @classmethod
    def _coerce_traffic(cls, value: Any) -> TrafficLevel:
        return TrafficLevel(value)


class RoadTrafficState(BaseModel):
    """Result of one traffic aggregation pass for a road."""

    model_config = ConfigDict(frozen=True)

    road_id: str
    level: TrafficLevel
    vehicle_count: int = 0
    node_count: int = 0
    density: float = 0.0
    updated_at: datetime | None = Field(default=None, description="When the level was written to the nodes")

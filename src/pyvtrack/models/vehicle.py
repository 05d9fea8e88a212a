"""Vehicle state and location history models."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from pyvtrack.models._base import WIRE_MODEL_CONFIG, EpochDatetime, ensure_utc
from pyvtrack.models.telemetry import RawReport, VehicleType


def _utcnow() -> datetime:
    return datetime.now(UTC)


class VehicleState(BaseModel):
    """Current state of one vehicle, overwritten on every processed report."""

    model_config = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    id: str
    x: float = Field(validation_alias=AliasChoices("x", "currentX"))
    y: float = Field(validation_alias=AliasChoices("y", "currentY"))
    vehicle_type: VehicleType = Field(
        default=VehicleType.UNKNOWN,
        validation_alias=AliasChoices("type", "vehicleType", "vehicle_type"),
    )
    direction: str = "unknown"
    distance: float = 0.0
    angle: float = 0.0
    speed: float = 0.0
    created_at: EpochDatetime = Field(default_factory=_utcnow)
    updated_at: EpochDatetime = Field(default_factory=_utcnow)

    @field_validator("vehicle_type", mode="before")
    @classmethod
    def _coerce_vehicle_type(cls, value: Any) -> VehicleType:
        return VehicleType(value)

    @field_validator("created_at", "updated_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class HistoryRecord(BaseModel):
    """Append-only audit entry for one received report.

    ``x`` and ``y`` are the raw (unfiltered) coordinates; ``created_at``
    is the report timestamp.
    """

    model_config = WIRE_MODEL_CONFIG

    vehicle_id: str
    x: float
    y: float
    vehicle_type: VehicleType = Field(
        default=VehicleType.UNKNOWN,
        validation_alias=AliasChoices("type", "vehicleType", "vehicle_type"),
    )
    direction: str = "unknown"
    distance: float = 0.0
    angle: float = 0.0
    valid: bool
    events: int = 0
    signal_strength: int | None = Field(
        default=None,
        validation_alias=AliasChoices("signal_strength", "signalStrength", "rssi"),
    )
    created_at: EpochDatetime

    @field_validator("vehicle_type", mode="before")
    @classmethod
    def _coerce_vehicle_type(cls, value: Any) -> VehicleType:
        return VehicleType(value)

    @field_validator("created_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @classmethod
    def from_report(cls, report: RawReport) -> HistoryRecord:
        return cls(
            vehicle_id=report.vehicle_id,
            x=report.x,
            y=report.y,
            vehicle_type=report.vehicle_type,
            direction=report.direction,
            distance=report.distance,
            angle=report.angle,
            valid=report.valid,
            events=report.events,
            signal_strength=report.signal_strength,
            created_at=datetime.fromtimestamp(report.timestamp, tz=UTC),
        )

    @property
    def timestamp(self) -> float:
        """Creation time as epoch seconds."""
        return self.created_at.timestamp()

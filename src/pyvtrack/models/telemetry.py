"""Telemetry report models."""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from pyvtrack.ingestion.normalize import safe_float, safe_int, safe_str
from pyvtrack.models._base import TrackerEnum, TrackerPayloadModel


class VehicleType(TrackerEnum):
    SENSOR_CAR = "SENSOR_CAR"
    CAR = "CAR"
    TRUCK = "TRUCK"
    UNKNOWN = "UNKNOWN"


class TelemetryPayload(TrackerPayloadModel):
    """One inbound position message as sent by a device.

    Coordinates and distance are in device-native units; see
    :class:`pyvtrack.config.UnitConversion`. ``x`` and ``y`` are required;
    every other field falls back to a default. Non-finite numbers are
    rejected.
    """

    vehicle_id: str | None = Field(default=None, validation_alias=AliasChoices("vehicle_id", "vehicleId"))
    vehicle_type: str | None = Field(default=None, validation_alias=AliasChoices("type", "vehicle_type", "vehicleType"))
    valid: bool = False
    x: float = Field(allow_inf_nan=False)
    y: float = Field(allow_inf_nan=False)
    distance: float = Field(default=0.0, allow_inf_nan=False)
    angle: float = Field(default=0.0, allow_inf_nan=False)
    direction: str | None = None
    timestamp: float | None = None
    events: int = 0
    signal_strength: int | None = Field(
        default=None,
        validation_alias=AliasChoices("signal_strength", "signalStrength", "rssi"),
    )

    @field_validator("vehicle_id", "vehicle_type", "direction", mode="before")
    @classmethod
    def _coerce_str(cls, value: Any) -> str | None:
        return safe_str(value)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> float | None:
        return safe_float(value)

    @field_validator("events", mode="before")
    @classmethod
    def _coerce_events(cls, value: Any) -> int:
        parsed = safe_int(value)
        return parsed if parsed is not None else 0

    @field_validator("signal_strength", mode="before")
    @classmethod
    def _coerce_signal(cls, value: Any) -> int | None:
        return safe_int(value)


class RawReport(BaseModel):
    """A normalized position report in canonical units.

    Parameters
    ----------
    vehicle_id : str
        Vehicle identifier, taken from the channel topic.
    vehicle_type : VehicleType
        Reported or inferred vehicle class.
    valid : bool
        Device-side fix validity flag.
    x, y : float
        Position in canonical units.
    distance : float
        Travelled distance in canonical units.
    angle : float
        Heading angle in degrees.
    direction : str
        Compass-direction label.
    timestamp : float
        Epoch seconds (server receive time unless the device clock is trusted).
    events : int
        Device event bitmask.
    signal_strength : int or None
        Signal strength indicator, ``None`` when the device did not report one.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", allow_inf_nan=False)

    vehicle_id: str
    vehicle_type: VehicleType = VehicleType.UNKNOWN
    valid: bool
    x: float
    y: float
    distance: float = 0.0
    angle: float = 0.0
    direction: str = "unknown"
    timestamp: float
    events: int = 0
    signal_strength: int | None = None

    @field_validator("vehicle_id")
    @classmethod
    def _normalize_vehicle_id(cls, value: str) -> str:
        vehicle_id = value.strip()
        if not vehicle_id:
            raise ValueError("vehicle_id must be non-empty")
        return vehicle_id

    @field_validator("vehicle_type", mode="before")
    @classmethod
    def _coerce_vehicle_type(cls, value: Any) -> VehicleType:
        return VehicleType(value)

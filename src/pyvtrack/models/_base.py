"""Base model and enum for wire payloads.

Models that are parsed from or serialized to external systems (device
telemetry, the persistence service) share :data:`WIRE_MODEL_CONFIG`:

* ``alias_generator=to_camel`` so camelCase keys map automatically to
  snake_case fields, while ``populate_by_name`` keeps snake_case input
  working for devices that send it.

:class:`TrackerPayloadModel` additionally strips sentinel values (``""``,
``"--"``, NaN) so field defaults apply, and stashes the original payload
in ``raw``.

Enums inherit from :class:`TrackerEnum` which resolves unmapped values
(including different letter case) to ``UNKNOWN``.
"""

from __future__ import annotations

import enum
import math
from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

# Sentinel strings devices use for "not available".
_SENTINELS = frozenset({"", "--", "NaN", "nan"})

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000

WIRE_MODEL_CONFIG = ConfigDict(
    frozen=True,
    extra="ignore",
    populate_by_name=True,
    alias_generator=to_camel,
)


def parse_epoch_timestamp(value: Any) -> datetime | None:
    """Convert an epoch timestamp (seconds **or** milliseconds) to a UTC datetime.

    ISO strings and datetimes are passed through for pydantic to parse.
    """
    if value is None or isinstance(value, (datetime, str)):
        return value
    ts = float(value)
    if ts >= _MS_THRESHOLD:
        ts /= 1000.0
    return datetime.fromtimestamp(ts, tz=UTC)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


EpochDatetime = Annotated[datetime, BeforeValidator(parse_epoch_timestamp)]
"""Annotated type that coerces epoch numbers (seconds or ms) to UTC datetimes."""


class TrackerEnum(enum.StrEnum):
    """Base for string enums exchanged with devices and stores.

    Every subclass **must** define ``UNKNOWN``.
    """

    @classmethod
    def _missing_(cls, value: object) -> TrackerEnum:
        if isinstance(value, str):
            wanted = value.strip().upper()
            for member in cls:
                if member.value == wanted:
                    return member
        unknown: TrackerEnum = cls["UNKNOWN"]
        return unknown


class TrackerPayloadModel(BaseModel):
    """Base for inbound device payloads.

    * camelCase / snake_case keys both accepted
    * sentinel values dropped so the field default is used
    * original payload kept in ``raw``
    """

    model_config = WIRE_MODEL_CONFIG

    raw: dict[str, Any] = Field(default_factory=dict)
    """Original payload dict."""

    @staticmethod
    def _clean_dict(values: dict[str, Any]) -> dict[str, Any]:
        cleaned: dict[str, Any] = {}
        for key, value in values.items():
            if value is None:
                continue
            if isinstance(value, str) and value.strip() in _SENTINELS:
                continue
            if isinstance(value, float) and math.isnan(value):
                continue
            cleaned[key] = value
        return cleaned

    @model_validator(mode="before")
    @classmethod
    def _clean_values(cls, values: Any) -> Any:
        """Strip sentinel values and stash the raw payload."""
        if not isinstance(values, dict):
            return values
        cleaned = TrackerPayloadModel._clean_dict(values)
        if "raw" not in values:
            cleaned["raw"] = dict(values)
        return cleaned

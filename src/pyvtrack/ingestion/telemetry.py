"""Telemetry message normalization.

Turns one raw MQTT message (topic + payload) into a :class:`RawReport`
in canonical units:

- decode the JSON payload into a :class:`TelemetryPayload`
- reconcile the embedded vehicle id with the one encoded in the topic
- apply unit conversion factors from configuration
- infer the vehicle class when the payload omits it
- stamp the server receive time unless the device clock is trusted
"""

from __future__ import annotations

import json
import logging
import time
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError

from pyvtrack._redact import redact_for_log
from pyvtrack.config import TrackerConfig
from pyvtrack.exceptions import TelemetryDecodeError
from pyvtrack.ingestion.normalize import normalize_timestamp_seconds, vehicle_id_from_topic
from pyvtrack.models.telemetry import RawReport, TelemetryPayload, VehicleType

_logger = logging.getLogger(__name__)

_TYPE_PREFIXES: tuple[tuple[str, VehicleType], ...] = (
    ("esp32", VehicleType.SENSOR_CAR),
    ("car", VehicleType.CAR),
    ("truck", VehicleType.TRUCK),
)


def infer_vehicle_type(vehicle_id: str) -> VehicleType:
    """Infer the vehicle class from the id prefix convention."""
    lowered = vehicle_id.lower()
    for prefix, vehicle_type in _TYPE_PREFIXES:
        if lowered.startswith(prefix):
            return vehicle_type
    return VehicleType.UNKNOWN


def decode_payload(payload: bytes | str | Mapping[str, Any], *, topic: str = "") -> dict[str, Any]:
    """Decode a message body into a JSON object."""
    if isinstance(payload, Mapping):
        return dict(payload)
    try:
        text = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        parsed = json.loads(text)
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise TelemetryDecodeError(f"Payload is not valid JSON: {exc}", topic=topic) from exc
    if not isinstance(parsed, dict):
        raise TelemetryDecodeError("Payload decoded to non-object JSON", topic=topic)
    return parsed


def _payload_for_log(payload: bytes | str | Mapping[str, Any]) -> Any:
    if isinstance(payload, bytes):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            return payload
    return payload


def parse_report(
    topic: str,
    payload: bytes | str | Mapping[str, Any],
    config: TrackerConfig,
    *,
    received_at: float | None = None,
) -> RawReport:
    """Build a normalized report from one message.

    Raises
    ------
    TelemetryDecodeError
        The topic carries no vehicle id, the payload cannot be decoded,
        the embedded vehicle id contradicts the topic, or a numeric field
        is not finite.
    """
    topic_vehicle_id = (vehicle_id_from_topic(topic, config.broker.telemetry_topic) or "").strip()
    if not topic_vehicle_id:
        raise TelemetryDecodeError(f"Topic does not carry a vehicle id: {topic}", topic=topic)

    data = decode_payload(payload, topic=topic)
    try:
        message = TelemetryPayload.model_validate(data)
    except ValidationError as exc:
        raise TelemetryDecodeError(f"Malformed telemetry payload: {exc.error_count()} error(s)", topic=topic) from exc

    if message.vehicle_id is not None and message.vehicle_id != topic_vehicle_id:
        raise TelemetryDecodeError(
            f"Payload vehicle_id {message.vehicle_id!r} does not match topic id {topic_vehicle_id!r}",
            topic=topic,
        )

    now = time.time() if received_at is None else received_at
    timestamp = now
    if config.trust_device_clock:
        device_ts = normalize_timestamp_seconds(message.timestamp)
        if device_ts is not None:
            timestamp = device_ts

    vehicle_type = VehicleType(message.vehicle_type) if message.vehicle_type else infer_vehicle_type(topic_vehicle_id)
    units = config.units
    try:
        return RawReport(
            vehicle_id=topic_vehicle_id,
            vehicle_type=vehicle_type,
            valid=message.valid,
            x=message.x * units.coordinate_scale,
            y=message.y * units.coordinate_scale,
            distance=message.distance * units.distance_scale,
            angle=message.angle,
            direction=message.direction or "unknown",
            timestamp=timestamp,
            events=message.events,
            signal_strength=message.signal_strength,
        )
    except ValidationError as exc:
        raise TelemetryDecodeError(f"Telemetry out of range: {exc.error_count()} error(s)", topic=topic) from exc


def normalize_message(
    topic: str,
    payload: bytes | str | Mapping[str, Any],
    config: TrackerConfig,
    *,
    received_at: float | None = None,
) -> RawReport | None:
    """Like :func:`parse_report` but logs and drops malformed messages."""
    try:
        report = parse_report(topic, payload, config, received_at=received_at)
    except TelemetryDecodeError as exc:
        _logger.warning("Dropping telemetry message topic=%s: %s", topic, exc)
        _logger.debug("Dropped payload=%s", redact_for_log(_payload_for_log(payload)))
        return None
    _logger.debug(
        "[%s] Received valid=%s pos=(%.2f, %.2f) direction=%s",
        report.vehicle_id,
        report.valid,
        report.x,
        report.y,
        report.direction,
    )
    return report

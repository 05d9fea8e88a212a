"""Service configuration for pyvtrack."""

from __future__ import annotations

import dataclasses
import os
from collections.abc import Callable
from typing import Any

from pyvtrack.exceptions import VtrackConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _require(condition: bool, message: str) -> None:
    if not condition:
        raise VtrackConfigError(message)


@dataclasses.dataclass(frozen=True)
class BrokerSettings:
    """MQTT broker connection and subscription settings.

    ``telemetry_topic`` must contain exactly one ``+`` wildcard segment;
    that segment carries the vehicle id.
    """

    host: str = "localhost"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    tls: bool = False
    keepalive: int = 60
    client_id: str = "pyvtrack"
    telemetry_topic: str = "vehicle/+/info"
    qos: int = 0

    def __post_init__(self) -> None:
        _require(
            self.telemetry_topic.split("/").count("+") == 1,
            f"telemetry_topic must contain exactly one '+' segment, got {self.telemetry_topic!r}",
        )
        _require(self.qos in (0, 1, 2), f"qos must be 0, 1 or 2, got {self.qos}")

    def topic_for(self, vehicle_id: str) -> str:
        """Concrete topic for a single vehicle."""
        return "/".join(vehicle_id if part == "+" else part for part in self.telemetry_topic.split("/"))


@dataclasses.dataclass(frozen=True)
class UnitConversion:
    """Multipliers from device-native units to canonical metres.

    The reference devices report coordinates in metres and the travelled
    distance in decimetres.
    """

    coordinate_scale: float = 1.0
    distance_scale: float = 0.1


@dataclasses.dataclass(frozen=True)
class FilterSettings:
    """Location filter tuning.

    Parameters
    ----------
    history_size : int
        Accepted points kept per vehicle.
    process_noise : float
        Q in the fixed gain ``K = Q / (Q + R)``.
    measurement_noise : float
        R in the fixed gain.
    max_speed : float
        Velocity-plausibility ceiling in units per second.
    signal_floor : int
        Reports with a signal strength below this are dropped.
    average_window : int
        Points averaged by the moving-average stage, the new point included.
    """

    history_size: int = 10
    process_noise: float = 0.1
    measurement_noise: float = 1.0
    max_speed: float = 10.0
    signal_floor: int = -100
    average_window: int = 5

    def __post_init__(self) -> None:
        _require(self.history_size >= 1, "history_size must be >= 1")
        _require(self.process_noise >= 0 and self.measurement_noise >= 0, "noise constants must be >= 0")
        _require(self.process_noise + self.measurement_noise > 0, "Q + R must be positive")
        _require(self.max_speed > 0, "max_speed must be positive")
        _require(1 <= self.average_window <= self.history_size + 1, "average_window out of range")

    @property
    def gain(self) -> float:
        return self.process_noise / (self.process_noise + self.measurement_noise)


@dataclasses.dataclass(frozen=True)
class MatcherSettings:
    search_radius: float = 50.0
    max_candidates: int = 10
    max_deviation: float = 20.0
    min_confidence: float = 0.3

    def __post_init__(self) -> None:
        _require(self.search_radius > 0, "search_radius must be positive")
        _require(self.max_candidates >= 1, "max_candidates must be >= 1")
        _require(self.max_deviation > 0, "max_deviation must be positive")
        _require(0.0 <= self.min_confidence <= 1.0, "min_confidence must be within [0, 1]")


@dataclasses.dataclass(frozen=True)
class TrafficSettings:
    """Density aggregation settings.

    Density below ``smooth_below`` is SMOOTH, below ``normal_below`` is
    NORMAL, anything else CONGESTED.
    """

    tolerance: float = 10.0
    recency_window: float = 60.0
    smooth_below: float = 0.1
    normal_below: float = 0.3

    def __post_init__(self) -> None:
        _require(self.tolerance >= 0, "tolerance must be >= 0")
        _require(self.recency_window > 0, "recency_window must be positive")
        _require(0 <= self.smooth_below <= self.normal_below, "density bands must be increasing")


@dataclasses.dataclass(frozen=True)
class DispatchSettings:
    queue_size: int = 100
    max_concurrency: int = 32

    def __post_init__(self) -> None:
        _require(self.queue_size >= 1, "queue_size must be >= 1")
        _require(self.max_concurrency >= 1, "max_concurrency must be >= 1")


@dataclasses.dataclass(frozen=True)
class StoreSettings:
    """Persistence settings.

    When ``base_url`` is ``None`` the in-memory stores are used.
    ``timeout`` applies to every outbound persistence call.
    """

    base_url: str | None = None
    timeout: float = 5.0
    history_retention_days: int = 7

    def __post_init__(self) -> None:
        _require(self.timeout > 0, "timeout must be positive")
        _require(self.history_retention_days >= 1, "history_retention_days must be >= 1")


@dataclasses.dataclass(frozen=True)
class TrackerConfig:
    """Top-level configuration.

    Parameters
    ----------
    broker : BrokerSettings
        MQTT connection and topic settings.
    units : UnitConversion
        Device unit conversion factors.
    filter : FilterSettings
        Location filter thresholds.
    matcher : MatcherSettings
        Map matcher thresholds.
    traffic : TrafficSettings
        Traffic density aggregation thresholds.
    dispatch : DispatchSettings
        Per-vehicle queue bounds and worker concurrency.
    store : StoreSettings
        Persistence backend selection and timeouts.
    trust_device_clock : bool
        Use the device timestamp instead of the server receive time.
    """

    broker: BrokerSettings = dataclasses.field(default_factory=BrokerSettings)
    units: UnitConversion = dataclasses.field(default_factory=UnitConversion)
    filter: FilterSettings = dataclasses.field(default_factory=FilterSettings)
    matcher: MatcherSettings = dataclasses.field(default_factory=MatcherSettings)
    traffic: TrafficSettings = dataclasses.field(default_factory=TrafficSettings)
    dispatch: DispatchSettings = dataclasses.field(default_factory=DispatchSettings)
    store: StoreSettings = dataclasses.field(default_factory=StoreSettings)
    trust_device_clock: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> TrackerConfig:
        """Create configuration from ``VTRACK_*`` environment variables.

        Explicit keyword arguments override environment values. Section
        overrides may be given as a section instance or as a dict of
        field values.

        Raises
        ------
        VtrackConfigError
            When a variable cannot be parsed or a value is out of range.
        """
        env = os.environ

        section_kwargs: dict[str, dict[str, Any]] = {name: {} for name in _SECTION_TYPES}
        for env_key, (section, field_name, convert) in _ENV_SECTION_MAP.items():
            val = env.get(env_key)
            if val is None:
                continue
            try:
                section_kwargs[section][field_name] = convert(val)
            except ValueError as exc:
                raise VtrackConfigError(f"Invalid value for {env_key}: {val!r}") from exc

        config_kwargs: dict[str, Any] = {}
        for section, section_type in _SECTION_TYPES.items():
            override = overrides.pop(section, None)
            if isinstance(override, section_type):
                config_kwargs[section] = override
                continue
            if isinstance(override, dict):
                section_kwargs[section].update(override)
            try:
                config_kwargs[section] = section_type(**section_kwargs[section])
            except TypeError as exc:
                raise VtrackConfigError(f"Invalid {section} settings: {exc}") from exc

        if "trust_device_clock" not in overrides:
            config_kwargs["trust_device_clock"] = _env_bool(env.get("VTRACK_TRUST_DEVICE_CLOCK"), False)

        config_kwargs.update(overrides)
        return cls(**config_kwargs)


_SECTION_TYPES: dict[str, type] = {
    "broker": BrokerSettings,
    "units": UnitConversion,
    "filter": FilterSettings,
    "matcher": MatcherSettings,
    "traffic": TrafficSettings,
    "dispatch": DispatchSettings,
    "store": StoreSettings,
}


def _to_bool(value: str) -> bool:
    return _env_bool(value, False)


_ENV_SECTION_MAP: dict[str, tuple[str, str, Callable[[str], Any]]] = {
    "VTRACK_BROKER_HOST": ("broker", "host", str),
    "VTRACK_BROKER_PORT": ("broker", "port", int),
    "VTRACK_BROKER_USERNAME": ("broker", "username", str),
    "VTRACK_BROKER_PASSWORD": ("broker", "password", str),
    "VTRACK_BROKER_TLS": ("broker", "tls", _to_bool),
    "VTRACK_MQTT_KEEPALIVE": ("broker", "keepalive", int),
    "VTRACK_MQTT_CLIENT_ID": ("broker", "client_id", str),
    "VTRACK_TELEMETRY_TOPIC": ("broker", "telemetry_topic", str),
    "VTRACK_COORDINATE_SCALE": ("units", "coordinate_scale", float),
    "VTRACK_DISTANCE_SCALE": ("units", "distance_scale", float),
    "VTRACK_MAX_SPEED": ("filter", "max_speed", float),
    "VTRACK_SIGNAL_FLOOR": ("filter", "signal_floor", int),
    "VTRACK_SEARCH_RADIUS": ("matcher", "search_radius", float),
    "VTRACK_MAX_DEVIATION": ("matcher", "max_deviation", float),
    "VTRACK_MIN_CONFIDENCE": ("matcher", "min_confidence", float),
    "VTRACK_TRAFFIC_TOLERANCE": ("traffic", "tolerance", float),
    "VTRACK_TRAFFIC_RECENCY": ("traffic", "recency_window", float),
    "VTRACK_QUEUE_SIZE": ("dispatch", "queue_size", int),
    "VTRACK_MAX_CONCURRENCY": ("dispatch", "max_concurrency", int),
    "VTRACK_STORE_URL": ("store", "base_url", str),
    "VTRACK_STORE_TIMEOUT": ("store", "timeout", float),
    "VTRACK_HISTORY_RETENTION_DAYS": ("store", "history_retention_days", int),
}

from __future__ import annotations

import pytest

from pyvtrack.config import BrokerSettings, FilterSettings, MatcherSettings, TrackerConfig
from pyvtrack.exceptions import VtrackConfigError


def test_defaults_match_reference_tuning() -> None:
    config = TrackerConfig()

    assert config.filter.history_size == 10
    assert config.filter.gain == pytest.approx(0.1 / 1.1)
    assert config.filter.max_speed == 10.0
    assert config.matcher.search_radius == 50.0
    assert config.matcher.max_candidates == 10
    assert config.matcher.max_deviation == 20.0
    assert config.matcher.min_confidence == 0.3
    assert config.traffic.tolerance == 10.0
    assert config.traffic.recency_window == 60.0
    assert config.units.distance_scale == 0.1
    assert config.store.base_url is None
    assert config.trust_device_clock is False


def test_from_env_reads_sections(monkeypatch) -> None:
    monkeypatch.setenv("VTRACK_BROKER_HOST", "mqtt.local")
    monkeypatch.setenv("VTRACK_BROKER_PORT", "8883")
    monkeypatch.setenv("VTRACK_BROKER_TLS", "yes")
    monkeypatch.setenv("VTRACK_MAX_DEVIATION", "15.5")
    monkeypatch.setenv("VTRACK_STORE_URL", "http://store:8080/api")
    monkeypatch.setenv("VTRACK_TRUST_DEVICE_CLOCK", "true")

    config = TrackerConfig.from_env()

    assert config.broker.host == "mqtt.local"
    assert config.broker.port == 8883
    assert config.broker.tls is True
    assert config.matcher.max_deviation == 15.5
    assert config.store.base_url == "http://store:8080/api"
    assert config.trust_device_clock is True


def test_from_env_invalid_number_raises(monkeypatch) -> None:
    monkeypatch.setenv("VTRACK_BROKER_PORT", "not-a-port")

    with pytest.raises(VtrackConfigError, match="VTRACK_BROKER_PORT"):
        TrackerConfig.from_env()


def test_from_env_dict_override_wins_over_env(monkeypatch) -> None:
    monkeypatch.setenv("VTRACK_MAX_DEVIATION", "15")

    config = TrackerConfig.from_env(matcher={"max_deviation": 5.0})

    assert config.matcher.max_deviation == 5.0


def test_from_env_section_instance_override() -> None:
    matcher = MatcherSettings(min_confidence=0.5)

    config = TrackerConfig.from_env(matcher=matcher, trust_device_clock=True)

    assert config.matcher is matcher
    assert config.trust_device_clock is True


def test_from_env_unknown_section_field_raises() -> None:
    with pytest.raises(VtrackConfigError):
        TrackerConfig.from_env(filter={"no_such_field": 1})


def test_telemetry_topic_requires_single_wildcard() -> None:
    with pytest.raises(VtrackConfigError):
        BrokerSettings(telemetry_topic="vehicle/info")
    with pytest.raises(VtrackConfigError):
        BrokerSettings(telemetry_topic="+/vehicle/+")


def test_topic_for_substitutes_wildcard() -> None:
    assert BrokerSettings().topic_for("esp32-01") == "vehicle/esp32-01/info"
    assert BrokerSettings(telemetry_topic="fleet/+/pos").topic_for("car-2") == "fleet/car-2/pos"


def test_filter_settings_validation() -> None:
    with pytest.raises(VtrackConfigError):
        FilterSettings(process_noise=0.0, measurement_noise=0.0)
    with pytest.raises(VtrackConfigError):
        FilterSettings(average_window=20)
    with pytest.raises(VtrackConfigError):
        MatcherSettings(min_confidence=1.5)

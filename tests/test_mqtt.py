from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any

import paho.mqtt.client as mqtt
import pytest

from pyvtrack._mqtt import MqttMessage, TelemetryMqttRuntime, encode_payload
from pyvtrack.config import BrokerSettings
from pyvtrack.exceptions import VtrackError


@dataclass
class _PublishInfo:
    rc: int


@dataclass
class _FakeClient:
    rc: int = mqtt.MQTT_ERR_SUCCESS
    published: list[tuple[str, bytes, int, bool]] = field(default_factory=list)
    subscribed: list[str] = field(default_factory=list)
    unsubscribed: list[str] = field(default_factory=list)

    def publish(self, topic: str, payload: bytes, qos: int = 0, retain: bool = False) -> _PublishInfo:
        self.published.append((topic, payload, qos, retain))
        return _PublishInfo(self.rc)

    def subscribe(self, topic: str, qos: int = 0) -> None:
        self.subscribed.append(topic)

    def unsubscribe(self, topic: str) -> None:
        self.unsubscribed.append(topic)


def _runtime(loop: asyncio.AbstractEventLoop, client: _FakeClient | None = None) -> TelemetryMqttRuntime:
    received: list[MqttMessage] = []
    runtime = TelemetryMqttRuntime(loop=loop, settings=BrokerSettings(), on_message=received.append)
    if client is not None:
        # Bypass the network start; only the client handle and flag matter.
        runtime._client = client  # type: ignore[assignment]  # noqa: SLF001
        runtime._running = True  # noqa: SLF001
    return runtime


def test_encode_payload() -> None:
    assert encode_payload(b"raw") == b"raw"
    assert encode_payload("text") == b"text"
    assert json.loads(encode_payload({"x": 1, "valid": True})) == {"x": 1, "valid": True}
    assert encode_payload({"x": 1}) == b'{"x":1}'


@pytest.mark.asyncio
async def test_publish_requires_running_runtime() -> None:
    runtime = _runtime(asyncio.get_running_loop())

    assert runtime.is_running is False
    with pytest.raises(VtrackError, match="not running"):
        runtime.publish("vehicle/car-1/info", {"x": 1})


@pytest.mark.asyncio
async def test_publish_encodes_payload() -> None:
    client = _FakeClient()
    runtime = _runtime(asyncio.get_running_loop(), client)

    runtime.publish("vehicle/car-1/info", {"x": 1, "y": 2}, qos=1)

    topic, payload, qos, retain = client.published[0]
    assert topic == "vehicle/car-1/info"
    assert json.loads(payload) == {"x": 1, "y": 2}
    assert (qos, retain) == (1, False)


@pytest.mark.asyncio
async def test_publish_failure_raises() -> None:
    client = _FakeClient(rc=mqtt.MQTT_ERR_NO_CONN)
    runtime = _runtime(asyncio.get_running_loop(), client)

    with pytest.raises(VtrackError, match="failed"):
        runtime.publish("vehicle/car-1/info", "payload")


@pytest.mark.asyncio
async def test_subscriptions_are_tracked() -> None:
    client = _FakeClient()
    runtime = _runtime(asyncio.get_running_loop(), client)

    runtime.subscribe("vehicle/car-1/info")
    assert runtime.topics == frozenset({"vehicle/+/info", "vehicle/car-1/info"})
    assert client.subscribed == ["vehicle/car-1/info"]

    runtime.unsubscribe("vehicle/car-1/info")
    assert runtime.topics == frozenset({"vehicle/+/info"})
    assert client.unsubscribed == ["vehicle/car-1/info"]


@pytest.mark.asyncio
async def test_telemetry_topic_cannot_be_unsubscribed() -> None:
    runtime = _runtime(asyncio.get_running_loop())

    with pytest.raises(VtrackError):
        runtime.unsubscribe("vehicle/+/info")


@pytest.mark.asyncio
async def test_subscribe_before_start_is_remembered() -> None:
    runtime = _runtime(asyncio.get_running_loop())

    runtime.subscribe("vehicle/esp32-01/info")

    assert "vehicle/esp32-01/info" in runtime.topics

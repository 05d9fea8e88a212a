"""Internal MQTT runtime for telemetry ingestion."""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, cast

import paho.mqtt.client as mqtt

from pyvtrack._redact import redact_for_log
from pyvtrack.config import BrokerSettings
from pyvtrack.exceptions import VtrackError


@dataclass(frozen=True)
class MqttMessage:
    """One inbound message as handed to the event loop."""

    topic: str
    payload: bytes
    received_at: float


def encode_payload(payload: Mapping[str, Any] | str | bytes) -> bytes:
    if isinstance(payload, bytes):
        return payload
    if isinstance(payload, str):
        return payload.encode("utf-8")
    return json.dumps(dict(payload), separators=(",", ":")).encode("utf-8")


class TelemetryMqttRuntime:
    """Threaded paho-mqtt runtime that hands messages to an asyncio loop.

    The telemetry wildcard topic is always subscribed; extra topics added
    with :meth:`subscribe` are restored on every reconnect.
    """

    def __init__(
        self,
        *,
        loop: asyncio.AbstractEventLoop,
        settings: BrokerSettings,
        on_message: Callable[[MqttMessage], None],
        logger: logging.Logger | None = None,
    ) -> None:
        self._loop = loop
        self._settings = settings
        self._on_message = on_message
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._running = False
        self._topics: set[str] = {settings.telemetry_topic}

    @property
    def is_running(self) -> bool:
        """Whether the MQTT runtime is actively running."""
        return self._running

    @property
    def topics(self) -> frozenset[str]:
        return frozenset(self._topics)

    def start(self) -> None:
        """Connect and subscribe to the configured topics."""
        self.stop()
        settings = self._settings
        self._logger.debug(
            "MQTT runtime start requested settings=%s",
            redact_for_log(
                {
                    "host": settings.host,
                    "port": settings.port,
                    "client_id": settings.client_id,
                    "username": settings.username,
                    "password": settings.password,
                    "topic": settings.telemetry_topic,
                }
            ),
        )

        client = mqtt.Client(
            callback_api_version=cast(Any, mqtt).CallbackAPIVersion.VERSION2,
            client_id=settings.client_id,
            protocol=mqtt.MQTTv311,
        )
        client.enable_logger(self._logger)
        if settings.username:
            client.username_pw_set(settings.username, settings.password)
        if settings.tls:
            client.tls_set()

        def on_connect(
            c: mqtt.Client,
            _userdata: Any,
            _flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if reason_code.value != 0:
                self._logger.warning("MQTT connect failed: %s", reason_code)
                return
            self._logger.info("Connected to MQTT broker %s:%s", settings.host, settings.port)
            for topic in sorted(self._topics):
                self._logger.debug("MQTT subscribing topic=%s", topic)
                c.subscribe(topic, qos=settings.qos)

        def on_message(_c: mqtt.Client, _userdata: Any, msg: mqtt.MQTTMessage) -> None:
            try:
                message = MqttMessage(topic=msg.topic, payload=bytes(msg.payload), received_at=time.time())
                self._loop.call_soon_threadsafe(self._on_message, message)
            except Exception:
                self._logger.debug("MQTT message hand-off failure topic=%s", msg.topic, exc_info=True)

        def on_disconnect(
            _client: mqtt.Client,
            _userdata: Any,
            _disconnect_flags: Any,
            reason_code: Any,
            _properties: Any,
        ) -> None:
            if self._running:
                self._logger.info("MQTT disconnected: %s; paho will reconnect", reason_code)

        client.on_connect = on_connect
        client.on_message = on_message
        client.on_disconnect = on_disconnect

        client.connect(settings.host, settings.port, keepalive=settings.keepalive)
        client.loop_start()

        self._client = client
        self._running = True
        self._logger.debug("MQTT network loop started")

    def stop(self) -> None:
        """Stop and disconnect current MQTT client if running."""
        client = self._client
        self._client = None
        was_running = self._running
        self._running = False

        if client is None:
            return
        try:
            if was_running:
                self._logger.debug("MQTT disconnect requested")
                client.disconnect()
        finally:
            client.loop_stop()
            self._logger.debug("MQTT network loop stopped")

    def subscribe(self, topic: str) -> None:
        self._topics.add(topic)
        if self._client is not None and self._running:
            self._client.subscribe(topic, qos=self._settings.qos)
        self._logger.info("Subscribed to %s", topic)

    def unsubscribe(self, topic: str) -> None:
        if topic == self._settings.telemetry_topic:
            raise VtrackError("The telemetry topic cannot be unsubscribed")
        self._topics.discard(topic)
        if self._client is not None and self._running:
            self._client.unsubscribe(topic)
        self._logger.info("Unsubscribed from %s", topic)

    def publish(
        self,
        topic: str,
        payload: Mapping[str, Any] | str | bytes,
        *,
        qos: int = 0,
        retain: bool = False,
    ) -> None:
        """Publish *payload* (dicts are JSON-encoded) to *topic*."""
        client = self._client
        if client is None or not self._running:
            raise VtrackError("MQTT runtime is not running")
        info = client.publish(topic, encode_payload(payload), qos=qos, retain=retain)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise VtrackError(f"Publishing to {topic} failed: {mqtt.error_string(info.rc)}")
        self._logger.debug("Published message to %s", topic)

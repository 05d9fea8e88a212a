"""High-level async facade wiring the tracking pipeline together."""

from __future__ import annotations

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import aiohttp

from pyvtrack._mqtt import MqttMessage, TelemetryMqttRuntime
from pyvtrack.config import TrackerConfig
from pyvtrack.exceptions import VtrackError
from pyvtrack.ingestion.dispatch import KeyedDispatcher
from pyvtrack.ingestion.pipeline import TelemetryPipeline
from pyvtrack.ingestion.telemetry import normalize_message
from pyvtrack.models.results import ProcessingOutcome
from pyvtrack.models.telemetry import RawReport
from pyvtrack.models.vehicle import HistoryRecord, VehicleState
from pyvtrack.processing.filter import LocationFilter
from pyvtrack.processing.matcher import MapMatcher
from pyvtrack.processing.traffic import TrafficAggregator
from pyvtrack.state.policy import BoundingBox
from pyvtrack.state.rest import RestRoadNodeStore, RestTransport, RestVehicleStore
from pyvtrack.state.store import InMemoryRoadNodeStore, InMemoryVehicleStore, RoadNodeStore, VehicleStore

_logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class VehicleTracker:
    """Async service that consumes vehicle telemetry and keeps state current.

    Usage::

        async with VehicleTracker(config) as tracker:
            await tracker.start()
            ...

    Stores passed explicitly take precedence; otherwise the REST stores are
    used when ``config.store.base_url`` is set and the in-memory stores
    when it is not.

    Leaving the context waits for every queued report to be processed.
    """

    def __init__(
        self,
        config: TrackerConfig,
        *,
        session: aiohttp.ClientSession | None = None,
        road_nodes: RoadNodeStore | None = None,
        vehicles: VehicleStore | None = None,
        clock: Callable[[], datetime] = _utcnow,
        on_outcome: Callable[[ProcessingOutcome], None] | None = None,
    ) -> None:
        self._config = config
        self._external_session = session is not None
        self._http_session = session
        self._road_nodes = road_nodes
        self._vehicles = vehicles
        self._clock = clock
        self._on_outcome = on_outcome
        self._loop: asyncio.AbstractEventLoop | None = None
        self._pipeline: TelemetryPipeline | None = None
        self._dispatcher: KeyedDispatcher[RawReport] | None = None
        self._mqtt_runtime: TelemetryMqttRuntime | None = None
        self._vehicle_locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> VehicleTracker:
        self._loop = asyncio.get_running_loop()
        self._build_stores()
        self._build_pipeline()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.stop()
        if self._dispatcher is not None:
            await self._dispatcher.drain()
            await self._dispatcher.close()
        self._dispatcher = None
        self._pipeline = None
        self._mqtt_runtime = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
        self._loop = None

    def _build_stores(self) -> None:
        store_settings = self._config.store
        if self._road_nodes is not None and self._vehicles is not None:
            return
        if store_settings.base_url:
            if self._http_session is None:
                self._http_session = aiohttp.ClientSession()
            transport = RestTransport(store_settings.base_url, self._http_session, timeout=store_settings.timeout)
            self._road_nodes = self._road_nodes or RestRoadNodeStore(transport)
            self._vehicles = self._vehicles or RestVehicleStore(transport)
            _logger.info("Using persistence service at %s", store_settings.base_url)
        else:
            self._road_nodes = self._road_nodes or InMemoryRoadNodeStore(clock=self._clock)
            self._vehicles = self._vehicles or InMemoryVehicleStore(clock=self._clock)
            _logger.info("Using in-memory stores")

    def _build_pipeline(self) -> None:
        road_nodes = self.road_nodes
        vehicles = self.vehicles
        config = self._config
        matcher = MapMatcher(road_nodes, config.matcher)
        self._pipeline = TelemetryPipeline(
            location_filter=LocationFilter(config.filter),
            matcher=matcher,
            vehicles=vehicles,
            aggregator=TrafficAggregator(road_nodes, vehicles, config.traffic, clock=self._clock),
        )
        self._dispatcher = KeyedDispatcher(
            self._handle,
            key=lambda report: report.vehicle_id,
            settings=config.dispatch,
        )
        self._mqtt_runtime = TelemetryMqttRuntime(
            loop=self._require_loop(),
            settings=config.broker,
            on_message=self._on_mqtt_message,
            logger=_logger,
        )

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def config(self) -> TrackerConfig:
        return self._config

    @property
    def road_nodes(self) -> RoadNodeStore:
        if self._road_nodes is None:
            raise VtrackError("Tracker not initialized. Use 'async with VehicleTracker(...) as tracker:'")
        return self._road_nodes

    @property
    def vehicles(self) -> VehicleStore:
        if self._vehicles is None:
            raise VtrackError("Tracker not initialized. Use 'async with VehicleTracker(...) as tracker:'")
        return self._vehicles

    @property
    def pipeline(self) -> TelemetryPipeline:
        if self._pipeline is None:
            raise VtrackError("Tracker not initialized. Use 'async with VehicleTracker(...) as tracker:'")
        return self._pipeline

    @property
    def dispatcher(self) -> KeyedDispatcher[RawReport]:
        if self._dispatcher is None:
            raise VtrackError("Tracker not initialized. Use 'async with VehicleTracker(...) as tracker:'")
        return self._dispatcher

    @property
    def is_running(self) -> bool:
        return self._mqtt_runtime is not None and self._mqtt_runtime.is_running

    def _require_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            raise VtrackError("Tracker not initialized. Use 'async with VehicleTracker(...) as tracker:'")
        return self._loop

    def _require_runtime(self) -> TelemetryMqttRuntime:
        if self._mqtt_runtime is None:
            raise VtrackError("Tracker not initialized. Use 'async with VehicleTracker(...) as tracker:'")
        return self._mqtt_runtime

    # ------------------------------------------------------------------
    # MQTT
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Connect to the broker and start consuming telemetry."""
        runtime = self._require_runtime()
        if runtime.is_running:
            return
        await self._require_loop().run_in_executor(None, runtime.start)
        _logger.info("Tracker started; listening on %s", self._config.broker.telemetry_topic)

    async def stop(self) -> None:
        """Disconnect from the broker. Queued reports are still processed."""
        runtime = self._mqtt_runtime
        if runtime is None or not runtime.is_running:
            return
        await self._require_loop().run_in_executor(None, runtime.stop)
        _logger.info("Tracker stopped")

    def subscribe_vehicle(self, vehicle_id: str) -> str:
        """Add a subscription for a single vehicle's topic and return it."""
        topic = self._config.broker.topic_for(vehicle_id)
        self._require_runtime().subscribe(topic)
        return topic

    def unsubscribe_vehicle(self, vehicle_id: str) -> str:
        topic = self._config.broker.topic_for(vehicle_id)
        self._require_runtime().unsubscribe(topic)
        return topic

    def publish_test_location(self, vehicle_id: str, **fields: Any) -> str:
        """Publish a synthetic report on the vehicle's topic.

        *fields* override the defaults of a valid report at ``(0, 0)``
        stamped with the current time. Returns the topic used.
        """
        payload: dict[str, Any] = {
            "vehicle_id": vehicle_id,
            "valid": True,
            "x": 0,
            "y": 0,
            "distance": 0,
            "angle": 0,
            "direction": "north",
            "timestamp": int(time.time()),
            "events": 0,
        }
        payload.update(fields)
        topic = self._config.broker.topic_for(vehicle_id)
        self._require_runtime().publish(topic, payload)
        _logger.info("[%s] Published test location to %s", vehicle_id, topic)
        return topic

    def _on_mqtt_message(self, message: MqttMessage) -> None:
        """Handle one message on the event loop (scheduled by the MQTT thread)."""
        self.submit(message.topic, message.payload, received_at=message.received_at)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def submit(
        self,
        topic: str,
        payload: bytes | str | Mapping[str, Any],
        *,
        received_at: float | None = None,
    ) -> bool:
        """Normalize one message and queue it behind earlier reports of its vehicle.

        Returns ``False`` when the message was malformed or dropped by a
        full queue.
        """
        report = normalize_message(topic, payload, self._config, received_at=received_at)
        if report is None:
            return False
        return self.dispatcher.submit(report)

    async def process_report(self, report: RawReport) -> ProcessingOutcome:
        """Run *report* through the pipeline now, bypassing the queues.

        Reports of the same vehicle still never overlap: this waits for
        any report of that vehicle already in the pipeline.
        """
        return await self._handle(report)

    async def drain(self) -> None:
        """Wait until every queued report has been processed."""
        await self.dispatcher.drain()

    async def _handle(self, report: RawReport) -> ProcessingOutcome:
        async with self._vehicle_locks[report.vehicle_id]:
            outcome = await self.pipeline.process(report)
        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome)
            except Exception:
                _logger.debug("Outcome callback failed", exc_info=True)
        return outcome

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_vehicle(self, vehicle_id: str) -> VehicleState | None:
        return await self.vehicles.get_state(vehicle_id)

    async def get_trajectory(
        self,
        vehicle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[HistoryRecord]:
        """Location history of *vehicle_id*, newest first."""
        return await self.vehicles.trajectory(vehicle_id, start=start, end=end, limit=limit)

    async def vehicles_in_area(self, min_x: float, max_x: float, min_y: float, max_y: float) -> list[VehicleState]:
        return await self.vehicles.vehicles_in_area(BoundingBox(min_x, max_x, min_y, max_y))

    async def purge_history(self, days: int | None = None) -> int:
        """Delete history older than *days* (default: configured retention)."""
        retention = days if days is not None else self._config.store.history_retention_days
        removed = await self.vehicles.purge_history(self._clock() - timedelta(days=retention))
        _logger.info("Purged %d history records older than %d days", removed, retention)
        return removed

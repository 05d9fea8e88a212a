"""Stores backed by the persistence service's JSON API.

Responses are wrapped in the service envelope::

    {"code": 200, "message": "Success", "data": ...}

Every request carries a ``ClientTimeout``; transport failures, non-2xx
statuses and malformed bodies raise :class:`StoreError`.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from datetime import datetime
from typing import Any, Protocol
from urllib.parse import quote

import aiohttp
from pydantic import TypeAdapter, ValidationError

from pyvtrack.exceptions import StoreError
from pyvtrack.models.road import BlockCategory, RoadNode, TrafficLevel
from pyvtrack.models.vehicle import HistoryRecord, VehicleState
from pyvtrack.state.policy import BoundingBox
from pyvtrack.state.store import STATE_FIELDS

_logger = logging.getLogger(__name__)

_NODE_LIST = TypeAdapter(list[RoadNode])
_HISTORY_LIST = TypeAdapter(list[HistoryRecord])
_STATE_LIST = TypeAdapter(list[VehicleState])

_STATE_WIRE_KEYS: dict[str, str] = {
    "x": "x",
    "y": "y",
    "vehicle_type": "type",
    "direction": "direction",
    "distance": "distance",
    "angle": "angle",
    "speed": "speed",
}


def _param(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _segment(value: str) -> str:
    return quote(value, safe="")


def _area_params(area: BoundingBox) -> dict[str, Any]:
    return {"minX": area.min_x, "maxX": area.max_x, "minY": area.min_y, "maxY": area.max_y}


class JsonTransport(Protocol):
    """Structural transport interface used by the REST stores.

    Having a protocol here makes it easy to pass test doubles while
    keeping the production implementation (:class:`RestTransport`)
    concrete.
    """

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> Any: ...


class RestTransport:
    """aiohttp transport that unwraps the service response envelope."""

    def __init__(self, base_url: str, http_session: aiohttp.ClientSession, *, timeout: float = 5.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def request(
        self,
        method: str,
        endpoint: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """Send one request and return the envelope's ``data`` member."""
        url = f"{self._base_url}{endpoint}"
        query = {key: _param(value) for key, value in (params or {}).items() if value is not None}
        _logger.debug("%s %s params=%s", method, url, query)

        try:
            async with self._http.request(
                method,
                url,
                params=query or None,
                json=body,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise StoreError(f"Request to {endpoint} failed: {exc!r}", endpoint=endpoint) from exc

        if not 200 <= status < 300:
            raise StoreError(f"HTTP {status} from {endpoint}: {text[:200]}", status_code=status, endpoint=endpoint)

        if not text.strip():
            return None
        try:
            envelope = json.loads(text)
        except json.JSONDecodeError as exc:
            raise StoreError(f"Invalid JSON from {endpoint}: {text[:200]}", status_code=status, endpoint=endpoint) from exc
        if not isinstance(envelope, dict) or "data" not in envelope:
            raise StoreError(f"Missing 'data' field from {endpoint}", status_code=status, endpoint=endpoint)
        return envelope["data"]


def _parse(adapter_or_model: Any, data: Any, endpoint: str) -> Any:
    try:
        if isinstance(adapter_or_model, TypeAdapter):
            return adapter_or_model.validate_python(data)
        return adapter_or_model.model_validate(data)
    except ValidationError as exc:
        raise StoreError(f"Unexpected response shape from {endpoint}: {exc.error_count()} error(s)", endpoint=endpoint) from exc


def _count(data: Any, endpoint: str) -> int:
    if isinstance(data, Mapping):
        data = data.get("count")
    if isinstance(data, bool) or not isinstance(data, int):
        raise StoreError(f"Expected a count from {endpoint}, got {data!r}", endpoint=endpoint)
    return data


class RestRoadNodeStore:
    def __init__(self, transport: JsonTransport) -> None:
        self._transport = transport

    async def nodes_in_bounding_box(
        self,
        min_x: float,
        max_x: float,
        min_y: float,
        max_y: float,
        block: BlockCategory = BlockCategory.ROAD,
        limit: int | None = None,
    ) -> list[RoadNode]:
        endpoint = "/maps/data/area"
        params = {"minX": min_x, "maxX": max_x, "minY": min_y, "maxY": max_y, "block": block.value, "limit": limit}
        data = await self._transport.request("GET", endpoint, params=params)
        return _parse(_NODE_LIST, data or [], endpoint)

    async def nodes_for_road_ordered(self, road_id: str) -> list[RoadNode]:
        endpoint = f"/roads/{_segment(road_id)}/nodes"
        data = await self._transport.request(
            "GET",
            endpoint,
            params={"block": BlockCategory.ROAD.value, "orderBy": "x,y"},
        )
        return _parse(_NODE_LIST, data or [], endpoint)

    async def bulk_set_traffic(self, node_ids: Sequence[int], level: TrafficLevel) -> int:
        endpoint = "/maps/data/traffic"
        data = await self._transport.request("PUT", endpoint, body={"ids": list(node_ids), "traffic": level.value})
        return _count(data, endpoint)


class RestVehicleStore:
    def __init__(self, transport: JsonTransport) -> None:
        self._transport = transport

    async def upsert_state(self, vehicle_id: str, fields: Mapping[str, Any]) -> VehicleState:
        unknown = set(fields) - STATE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported state fields: {sorted(unknown)}")
        endpoint = f"/vehicles/{_segment(vehicle_id)}"
        body = {_STATE_WIRE_KEYS[key]: getattr(value, "value", value) for key, value in fields.items()}
        data = await self._transport.request("PUT", endpoint, body=body)
        return _parse(VehicleState, data, endpoint)

    async def latest_history(self, vehicle_id: str, *, valid_only: bool = True) -> HistoryRecord | None:
        endpoint = f"/vehicles/{_segment(vehicle_id)}/history/latest"
        try:
            data = await self._transport.request("GET", endpoint, params={"validOnly": valid_only})
        except StoreError as exc:
            if exc.status_code == 404:
                return None
            raise
        if data is None:
            return None
        return _parse(HistoryRecord, data, endpoint)

    async def append_history(self, record: HistoryRecord) -> None:
        endpoint = f"/vehicles/{_segment(record.vehicle_id)}/history"
        await self._transport.request("POST", endpoint, body=record.model_dump(mode="json", by_alias=True))

    async def count_vehicles_in_area(self, area: BoundingBox, *, updated_since: datetime) -> int:
        endpoint = "/vehicles/count"
        data = await self._transport.request(
            "GET",
            endpoint,
            params={**_area_params(area), "updatedSince": updated_since},
        )
        return _count(data, endpoint)

    async def get_state(self, vehicle_id: str) -> VehicleState | None:
        endpoint = f"/vehicles/{_segment(vehicle_id)}"
        try:
            data = await self._transport.request("GET", endpoint)
        except StoreError as exc:
            if exc.status_code == 404:
                return None
            raise
        if data is None:
            return None
        return _parse(VehicleState, data, endpoint)

    async def trajectory(
        self,
        vehicle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[HistoryRecord]:
        endpoint = f"/vehicles/{_segment(vehicle_id)}/trajectory"
        data = await self._transport.request(
            "GET",
            endpoint,
            params={"startTime": start, "endTime": end, "limit": limit},
        )
        return _parse(_HISTORY_LIST, data or [], endpoint)

    async def vehicles_in_area(self, area: BoundingBox) -> list[VehicleState]:
        endpoint = "/vehicles/area"
        data = await self._transport.request("GET", endpoint, params=_area_params(area))
        return _parse(_STATE_LIST, data or [], endpoint)

    async def purge_history(self, older_than: datetime) -> int:
        endpoint = "/vehicles/history"
        data = await self._transport.request("DELETE", endpoint, params={"before": older_than})
        return _count(data, endpoint)

"""Persistence interfaces and in-memory stores.

The pipeline talks to two collaborators:

* :class:`RoadNodeStore` - read access to the road grid plus the traffic
  level overwrite used by the aggregator.
* :class:`VehicleStore` - the current-state row per vehicle and the
  append-only location history.

The in-memory implementations are the default backend and the test
doubles; :mod:`pyvtrack.state.rest` talks to an external service.
Every method of the in-memory stores completes without awaiting, so an
individual call is atomic on the event loop.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol

from pyvtrack.models.road import BlockCategory, RoadNode, TrafficLevel
from pyvtrack.models.vehicle import HistoryRecord, VehicleState
from pyvtrack.state.policy import BoundingBox

#: Fields the pipeline may set through :meth:`VehicleStore.upsert_state`.
STATE_FIELDS: frozenset[str] = frozenset({"x", "y", "vehicle_type", "direction", "distance", "angle", "speed"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


class RoadNodeStore(Protocol):
    """Road grid access used by the map matcher and traffic aggregator."""

    async def nodes_in_bounding_box(
        self,
        min_x: float,
        max_x: float,
        min_y: float,
        max_y: float,
        block: BlockCategory = BlockCategory.ROAD,
        limit: int | None = None,
    ) -> list[RoadNode]: ...

    async def nodes_for_road_ordered(self, road_id: str) -> list[RoadNode]: ...

    async def bulk_set_traffic(self, node_ids: Sequence[int], level: TrafficLevel) -> int: ...


class VehicleStore(Protocol):
    """Vehicle state rows and location history."""

    async def upsert_state(self, vehicle_id: str, fields: Mapping[str, Any]) -> VehicleState: ...

    async def latest_history(self, vehicle_id: str, *, valid_only: bool = True) -> HistoryRecord | None: ...

    async def append_history(self, record: HistoryRecord) -> None: ...

    async def count_vehicles_in_area(self, area: BoundingBox, *, updated_since: datetime) -> int: ...

    async def get_state(self, vehicle_id: str) -> VehicleState | None: ...

    async def trajectory(
        self,
        vehicle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[HistoryRecord]: ...

    async def vehicles_in_area(self, area: BoundingBox) -> list[VehicleState]: ...

    async def purge_history(self, older_than: datetime) -> int: ...


class InMemoryRoadNodeStore:
    """Road grid held in a dict keyed by node id."""

    def __init__(self, nodes: Iterable[RoadNode] = (), *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._nodes: dict[int, RoadNode] = {}
        self.add_many(nodes)

    def add(self, node: RoadNode) -> None:
        self._nodes[node.id] = node

    def add_many(self, nodes: Iterable[RoadNode]) -> None:
        for node in nodes:
            self.add(node)

    def get(self, node_id: int) -> RoadNode | None:
        return self._nodes.get(node_id)

    async def nodes_in_bounding_box(
        self,
        min_x: float,
        max_x: float,
        min_y: float,
        max_y: float,
        block: BlockCategory = BlockCategory.ROAD,
        limit: int | None = None,
    ) -> list[RoadNode]:
        """Nodes of *block* inside the box, closest to the box centre first."""
        box = BoundingBox(min_x, max_x, min_y, max_y)
        center = box.center
        found = [node for node in self._nodes.values() if node.block == block and box.contains(node.x, node.y)]
        found.sort(key=lambda node: ((node.x - center.x) ** 2 + (node.y - center.y) ** 2, node.id))
        return found[:limit] if limit is not None else found

    async def nodes_for_road_ordered(self, road_id: str) -> list[RoadNode]:
        """ROAD nodes of *road_id* ordered by ``(x, y)`` to form a polyline."""
        nodes = [node for node in self._nodes.values() if node.road_id == road_id and node.block == BlockCategory.ROAD]
        nodes.sort(key=lambda node: (node.x, node.y))
        return nodes

    async def bulk_set_traffic(self, node_ids: Sequence[int], level: TrafficLevel) -> int:
        now = self._clock()
        updated = 0
        for node_id in node_ids:
            node = self._nodes.get(node_id)
            if node is None:
                continue
            self._nodes[node_id] = node.model_copy(update={"traffic": level, "updated_at": now})
            updated += 1
        return updated


class InMemoryVehicleStore:
    """Vehicle state and history held in process memory."""

    def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self._clock = clock
        self._states: dict[str, VehicleState] = {}
        self._history: dict[str, list[HistoryRecord]] = {}

    async def upsert_state(self, vehicle_id: str, fields: Mapping[str, Any]) -> VehicleState:
        unknown = set(fields) - STATE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported state fields: {sorted(unknown)}")
        now = self._clock()
        current = self._states.get(vehicle_id)
        if current is None:
            state = VehicleState.model_validate({**fields, "id": vehicle_id, "created_at": now, "updated_at": now})
        else:
            state = VehicleState.model_validate(
                {**current.model_dump(), **fields, "id": vehicle_id, "updated_at": now},
            )
        self._states[vehicle_id] = state
        return state.model_copy()

    async def latest_history(self, vehicle_id: str, *, valid_only: bool = True) -> HistoryRecord | None:
        records = [record for record in self._history.get(vehicle_id, []) if record.valid or not valid_only]
        if not records:
            return None
        # Later arrivals win ties on created_at.
        return max(reversed(records), key=lambda record: record.created_at)

    async def append_history(self, record: HistoryRecord) -> None:
        self._history.setdefault(record.vehicle_id, []).append(record)

    async def count_vehicles_in_area(self, area: BoundingBox, *, updated_since: datetime) -> int:
        return sum(
            1
            for state in self._states.values()
            if area.contains(state.x, state.y) and state.updated_at >= updated_since
        )

    async def get_state(self, vehicle_id: str) -> VehicleState | None:
        state = self._states.get(vehicle_id)
        return state.model_copy() if state is not None else None

    async def trajectory(
        self,
        vehicle_id: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        limit: int = 100,
    ) -> list[HistoryRecord]:
        """History of *vehicle_id*, newest first."""
        records = [
            record
            for record in self._history.get(vehicle_id, [])
            if (start is None or record.created_at >= start) and (end is None or record.created_at <= end)
        ]
        records.sort(key=lambda record: record.created_at, reverse=True)
        return records[:limit]

    async def vehicles_in_area(self, area: BoundingBox) -> list[VehicleState]:
        return [state.model_copy() for state in self._states.values() if area.contains(state.x, state.y)]

    async def purge_history(self, older_than: datetime) -> int:
        removed = 0
        for vehicle_id, records in list(self._history.items()):
            kept = [record for record in records if record.created_at >= older_than]
            removed += len(records) - len(kept)
            if kept:
                self._history[vehicle_id] = kept
            else:
                self._history.pop(vehicle_id, None)
        return removed

    def history_count(self, vehicle_id: str) -> int:
        return len(self._history.get(vehicle_id, []))

    def vehicle_ids(self) -> list[str]:
        return list(self._states)

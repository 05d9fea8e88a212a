"""Keyed serialization of work items.

Items sharing a key (the vehicle id) are handled one at a time in
submission order by a single worker task; items with different keys run
concurrently, bounded by a global semaphore. Each key has a bounded
queue; when it is full the new item is dropped.

Workers are created on demand and exit as soon as their queue drains,
so idle vehicles cost nothing.

All methods must be called from the event loop thread.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from pyvtrack.config import DispatchSettings

_logger = logging.getLogger(__name__)

T = TypeVar("T")


class KeyedDispatcher(Generic[T]):
    def __init__(
        self,
        handler: Callable[[T], Awaitable[object]],
        *,
        key: Callable[[T], str],
        settings: DispatchSettings | None = None,
    ) -> None:
        self._handler = handler
        self._key = key
        self._settings = settings or DispatchSettings()
        self._semaphore = asyncio.Semaphore(self._settings.max_concurrency)
        self._queues: dict[str, asyncio.Queue[T]] = {}
        self._workers: dict[str, asyncio.Task[None]] = {}
        self._closed = False
        self.dropped = 0
        self.failed = 0

    @property
    def active_keys(self) -> list[str]:
        return list(self._workers)

    def pending(self, key: str) -> int:
        queue = self._queues.get(key)
        return queue.qsize() if queue is not None else 0

    def submit(self, item: T) -> bool:
        """Queue *item* behind earlier items with the same key.

        Returns ``False`` when the item was dropped (queue full or
        dispatcher closed).
        """
        if self._closed:
            _logger.debug("Dispatcher closed; dropping item")
            return False

        key = self._key(item)
        queue = self._queues.get(key)
        if queue is None:
            queue = asyncio.Queue(maxsize=self._settings.queue_size)
            self._queues[key] = queue
        try:
            queue.put_nowait(item)
        except asyncio.QueueFull:
            self.dropped += 1
            _logger.warning("[%s] Queue full (%d pending); dropping report", key, queue.qsize())
            return False

        if key not in self._workers:
            task = asyncio.get_running_loop().create_task(self._run(key, queue), name=f"pyvtrack-worker-{key}")
            self._workers[key] = task
        return True

    async def _run(self, key: str, queue: asyncio.Queue[T]) -> None:
        try:
            while True:
                try:
                    item = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                try:
                    async with self._semaphore:
                        await self._handler(item)
                except Exception:
                    self.failed += 1
                    _logger.warning("[%s] Report handler failed", key, exc_info=True)
                finally:
                    queue.task_done()
        finally:
            if self._workers.get(key) is asyncio.current_task():
                self._workers.pop(key, None)
                if queue.empty() and self._queues.get(key) is queue:
                    self._queues.pop(key, None)

    async def drain(self) -> None:
        """Wait until every queued item has been handled."""
        while self._workers:
            await asyncio.gather(*list(self._workers.values()), return_exceptions=True)

    async def close(self) -> None:
        """Stop accepting items and cancel outstanding work."""
        self._closed = True
        workers = list(self._workers.values())
        for task in workers:
            task.cancel()
        if workers:
            await asyncio.gather(*workers, return_exceptions=True)
        self._workers.clear()
        self._queues.clear()

"""
variant_sdk.tier2_reliability.cache
───────────────────────────────────────
In-process caching primitives.

- MemoryCache: thread-safe dict used as the read-through layer in front of
  the document store.
- SingleFlight: collapses concurrent calls for the same key into one shared
  task (stampede protection). No lock is held while the task awaits I/O;
  the lock only guards the in-flight table.
"""
from __future__ import annotations

import asyncio
import threading
from collections.abc import Awaitable, Callable, Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")
T = TypeVar("T")


class MemoryCache(Generic[K, V]):
    """Thread-safe in-process map."""

    def __init__(self) -> None:
        self._store: dict[K, V] = {}
        self._lock = threading.Lock()

    def get(self, key: K) -> V | None:
        with self._lock:
            return self._store.get(key)

    def set(self, key: K, value: V) -> None:
        with self._lock:
            self._store[key] = value

    def delete(self, key: K) -> None:
        with self._lock:
            self._store.pop(key, None)


class SingleFlight:
    """
    Share one in-flight task per key between concurrent callers.

    Usage::

        flights = SingleFlight()
        snapshot = await flights.run("fetch", self._fetch_with_retry)

    A caller that gets cancelled stops waiting but does not cancel the shared
    task; ``cancel_all()`` does (call it on teardown).
    """

    def __init__(self) -> None:
        self._inflight: dict[Hashable, asyncio.Task] = {}
        self._lock = threading.Lock()

    async def run(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        with self._lock:
            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(fn())
                self._inflight[key] = task
                task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        with self._lock:
            if self._inflight.get(key) is task:
                del self._inflight[key]
        if not task.cancelled():
            # mark retrieved: every waiter may have been cancelled
            task.exception()

    async def cancel_all(self) -> None:
        with self._lock:
            tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


__all__ = ["MemoryCache", "SingleFlight"]

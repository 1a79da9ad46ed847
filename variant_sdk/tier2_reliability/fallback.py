"""
variant_sdk.tier2_reliability.fallback
─────────────────────────────────────────
Standardized degraded-mode behavior. When a primary source fails the engine
prefers a consistent, slightly stale answer over surfacing an error:

  - Secondary source call (snapshot key → document-store scan)
  - Last-known-good value with age tracking (snapshot, catalog)
"""
from __future__ import annotations

import threading
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from variant_sdk.tier0_core.logging import get_logger
from variant_sdk.tier1_runtime.clock import Clock

T = TypeVar("T")

logger = get_logger(__name__)


async def call_with_secondary(
    primary: Callable[[], Awaitable[T]],
    secondary: Callable[[], Awaitable[T]],
    *,
    operation: str,
) -> tuple[T, bool]:
    """
    Await *primary*; on any exception, await *secondary* instead.

    Returns ``(value, used_secondary)``. If the secondary also fails its
    exception propagates with the primary failure attached as ``__context__``.

    Usage::

        experiments, degraded = await call_with_secondary(
            self._from_snapshot, self._from_documents, operation="catalog.load"
        )
    """
    try:
        return await primary(), False
    except Exception as exc:
        logger.warning(
            "fallback.primary_failed",
            operation=operation,
            primary=getattr(primary, "__qualname__", repr(primary)),
            secondary=getattr(secondary, "__qualname__", repr(secondary)),
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return await secondary(), True


class LastKnownGood(Generic[T]):
    """
    Holder for the most recent successful value of something refreshable.

    The value is replaced only through ``update``; failures leave it alone so
    readers keep getting the last good answer. ``age()`` uses the monotonic
    clock.
    """

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or Clock()
        self._lock = threading.Lock()
        self._value: T | None = None
        self._updated_at: float | None = None

    def update(self, value: T) -> None:
        with self._lock:
            self._value = value
            self._updated_at = self._clock.monotonic()

    def replace(self, value: T) -> None:
        """Swap the held value without resetting its age."""
        with self._lock:
            self._value = value

    @property
    def value(self) -> T | None:
        with self._lock:
            return self._value

    @property
    def has_value(self) -> bool:
        with self._lock:
            return self._updated_at is not None

    def age(self) -> float | None:
        with self._lock:
            if self._updated_at is None:
                return None
            return self._clock.monotonic() - self._updated_at

    def is_fresh(self, max_age: float) -> bool:
        """True if a value exists and is strictly younger than *max_age* seconds."""
        age = self.age()
        return age is not None and age < max_age


__all__ = ["call_with_secondary", "LastKnownGood"]

"""
variant_sdk.tier1_runtime.clock
──────────────────────────────────
Mockable time source. Wall-clock UTC time stamps snapshots and assignments;
the monotonic reading drives the freshness gate and catalog age so that a
wall-clock jump never opens or shuts the gate.
"""
from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from typing import Callable


class Clock:
    """Injectable clock. Pass a frozen or advancing instance in tests."""

    def __init__(
        self,
        now_fn: Callable[[], datetime] | None = None,
        monotonic_fn: Callable[[], float] | None = None,
    ) -> None:
        self._now_fn = now_fn or (lambda: datetime.now(tz=timezone.utc))
        self._monotonic_fn = monotonic_fn or time.monotonic

    def now(self) -> datetime:
        """Return the current UTC datetime."""
        return self._now_fn()

    def monotonic(self) -> float:
        """Return a monotonic reading in seconds (only differences are meaningful)."""
        return self._monotonic_fn()


class ManualClock(Clock):
    """
    Clock that only moves when told to. Both readings advance together.

    Usage::

        clock = ManualClock()
        fetcher = ConfigFetcher(source, clock=clock)
        clock.advance(3601)
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._wall = start or datetime(2025, 1, 1, tzinfo=timezone.utc)
        self._mono = 0.0
        super().__init__(now_fn=lambda: self._wall, monotonic_fn=lambda: self._mono)

    def advance(self, seconds: float) -> None:
        self._wall += timedelta(seconds=seconds)
        self._mono += seconds


__all__ = ["Clock", "ManualClock"]

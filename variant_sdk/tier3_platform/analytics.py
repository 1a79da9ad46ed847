"""
variant_sdk.tier3_platform.analytics
───────────────────────────────────────
Analytics hook for assignment events. The engine only produces two things:

  - event ``experiment_assigned`` {experiment_id, variant_id, user_id}
  - user property ``experiment_variant`` = "<experiment_id>:<variant_id>"

Delivery is fire-and-forget: the service schedules the calls in the
background, never awaits them on the request path, never retries them, and
only logs their failures.

Configure via: VARIANT_ANALYTICS_BACKEND=log|mock
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from variant_sdk.tier0_core.config import get_settings
from variant_sdk.tier0_core.logging import get_logger

logger = get_logger(__name__)

EVENT_EXPERIMENT_ASSIGNED = "experiment_assigned"
PROPERTY_EXPERIMENT_VARIANT = "experiment_variant"


@runtime_checkable
class AnalyticsSink(Protocol):
    async def log_event(self, name: str, params: dict[str, Any]) -> None: ...

    async def set_user_property(self, name: str, value: str | None) -> None: ...


@dataclass
class AnalyticsEvent:
    name: str
    params: dict[str, Any] = field(default_factory=dict)


# ── Mock provider ─────────────────────────────────────────────────────────────

class MockAnalyticsSink:
    """Records everything it receives. ``fail`` makes every call raise."""

    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.events: list[AnalyticsEvent] = []
        self.user_properties: dict[str, str | None] = {}

    async def log_event(self, name: str, params: dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("analytics sink unavailable")
        self.events.append(AnalyticsEvent(name=name, params=dict(params)))

    async def set_user_property(self, name: str, value: str | None) -> None:
        if self.fail:
            raise ConnectionError("analytics sink unavailable")
        self.user_properties[name] = value

    def events_named(self, name: str) -> list[AnalyticsEvent]:
        return [e for e in self.events if e.name == name]


# ── Log provider ──────────────────────────────────────────────────────────────

class LoggingAnalyticsSink:
    """Writes analytics calls to the structured log (default when no SDK is wired in)."""

    async def log_event(self, name: str, params: dict[str, Any]) -> None:
        logger.info("analytics.event", analytics_event=name, **params)

    async def set_user_property(self, name: str, value: str | None) -> None:
        logger.info("analytics.user_property", property=name, value=value)


def build_analytics_sink() -> AnalyticsSink:
    """Construct the sink selected by VARIANT_ANALYTICS_BACKEND."""
    name = get_settings().analytics_backend
    if name == "log":
        return LoggingAnalyticsSink()
    if name == "mock":
        return MockAnalyticsSink()
    raise ValueError(f"Unknown VARIANT_ANALYTICS_BACKEND={name!r}. Supported: log, mock")


__all__ = [
    "AnalyticsSink", "AnalyticsEvent", "MockAnalyticsSink", "LoggingAnalyticsSink",
    "build_analytics_sink", "EVENT_EXPERIMENT_ASSIGNED", "PROPERTY_EXPERIMENT_VARIANT",
]

"""
variant_sdk.tier0_core.metrics
─────────────────────────────────
Counters and histograms with standard naming and labels, plus the engine's
own instruments. Exposed through the default Prometheus registry; the host
application decides whether and where to serve it.

Minimal stack: prometheus-client
"""
from __future__ import annotations

from typing import Callable

from prometheus_client import Counter, Histogram

from variant_sdk.tier0_core.config import get_settings

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]


def _default_label_values() -> dict[str, str]:
    settings = get_settings()
    return {"service": settings.app_name, "env": settings.environment}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create a counter with standard labels.

    Usage:
        fetches = counter("variant_config_fetch_total", "Config fetches", ["outcome"])
        fetches(outcome="success").inc()
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    c = Counter(name, description, all_labels)

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_default_label_values(), **extra_labels)

    return _counter


def histogram(
    name: str,
    description: str,
    labels: list[str] | None = None,
    buckets: tuple = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
) -> Callable:
    """Create a histogram with standard labels."""
    all_labels = _DEFAULT_LABELS + (labels or [])
    h = Histogram(name, description, all_labels, buckets=buckets)

    def _histogram(**extra_labels: str) -> Histogram:
        return h.labels(**_default_label_values(), **extra_labels)

    return _histogram


# ── Engine instruments ────────────────────────────────────────────────────────

config_fetch_total = counter(
    "variant_config_fetch_total",
    "Remote config fetch outcomes",
    ["outcome"],  # success | throttled | failed | rejected
)
config_fetch_attempts_total = counter(
    "variant_config_fetch_attempts_total",
    "Individual remote config fetch attempts, including retries",
)
config_fetch_duration = histogram(
    "variant_config_fetch_duration_seconds",
    "Wall time of a full fetch-and-activate including backoff",
)
catalog_load_total = counter(
    "variant_catalog_load_total",
    "Experiment catalog loads by source",
    ["source"],  # remote_config | documents | failed
)
assignments_total = counter(
    "variant_assignments_total",
    "Variant resolutions by result",
    ["result"],  # created | reused | race_lost | persist_failed | not_running
)


__all__ = [
    "counter", "histogram",
    "config_fetch_total", "config_fetch_attempts_total", "config_fetch_duration",
    "catalog_load_total", "assignments_total",
]

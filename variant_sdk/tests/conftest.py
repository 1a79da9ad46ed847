"""
variant_sdk test configuration.

All tests run against in-memory backends with no network access and no real sleeping
through backoff delays. Override by setting environment variables before
running pytest.
"""
from __future__ import annotations

import json
import os

import pytest

# ── Force test backends ────────────────────────────────────────────────────
# These must be set before any variant_sdk modules are imported.

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("VARIANT_DOCUMENTS_BACKEND", "memory")
os.environ.setdefault("VARIANT_ANALYTICS_BACKEND", "mock")
os.environ.setdefault("VARIANT_ERROR_BACKEND", "none")
os.environ.setdefault("VARIANT_LOG_LEVEL", "WARNING")


# ── Catalog fixtures ───────────────────────────────────────────────────────

PRICING_V2 = {
    "id": "pricing_v2",
    "status": "active",
    "variants": [
        {"id": "A", "name": "Standard", "weight": 0.5,
         "config": {"monthlyPrice": 2.99, "annualPrice": 28.7}},
        {"id": "B", "name": "Premium", "weight": 0.5,
         "config": {"monthlyPrice": 3.99, "annualPrice": 38.3}},
    ],
}

USAGE_LIMITS = {
    "id": "usage_limits_experiment",
    "status": "active",
    "variants": [
        {"id": "generous", "name": "Generous", "weight": 1,
         "config": {"scanLimit": 30, "bookLimit": 35, "recommendationLimit": 8}},
    ],
}

OLD_ONBOARDING = {
    "id": "old_onboarding",
    "status": "inactive",
    "variants": [{"id": "A", "name": "Only", "weight": 1, "config": {}}],
}

ZERO_WEIGHT = {
    "id": "zero_weight",
    "status": "active",
    "variants": [{"id": "X", "name": "Parked", "weight": 0, "config": {}}],
}

CATALOG = [PRICING_V2, USAGE_LIMITS, OLD_ONBOARDING, ZERO_WEIGHT]

VALID_VALUES = {
    "feature_enabled": True,
    "max_books_limit": 200,
    "api_timeout": 30,
}


def remote_values(catalog: list[dict] | None = None, **overrides) -> dict:
    values = dict(VALID_VALUES)
    if catalog is not None:
        values["experiments"] = json.dumps(catalog)
    values.update(overrides)
    return values


class SleepRecorder:
    """Injected in place of asyncio.sleep: records backoff delays, never waits."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Each test sees settings built from the current environment."""
    from variant_sdk.tier0_core.config import _reset_settings

    _reset_settings()
    yield
    _reset_settings()


@pytest.fixture
def make_settings():
    from variant_sdk.tier0_core.config import EngineSettings

    def _make(**overrides):
        base = {
            "min_refresh_interval": 3600.0,
            "max_attempts": 3,
            "base_delay": 1.0,
            "catalog_refresh_interval": 300.0,
        }
        base.update(overrides)
        return EngineSettings(**base)

    return _make


@pytest.fixture
def settings(make_settings):
    return make_settings()


@pytest.fixture
def sleeper():
    return SleepRecorder()


@pytest.fixture
def clock():
    from variant_sdk.tier1_runtime.clock import ManualClock
    return ManualClock()


@pytest.fixture
def config_source():
    """Remote config carrying valid required keys and the full catalog."""
    from variant_sdk.tier3_platform.remote_config import MockConfigSource
    return MockConfigSource(remote_values(CATALOG))


@pytest.fixture
def documents():
    from variant_sdk.tier2_reliability.documents import InMemoryDocumentStore
    return InMemoryDocumentStore()


@pytest.fixture
def analytics():
    from variant_sdk.tier3_platform.analytics import MockAnalyticsSink
    return MockAnalyticsSink()


@pytest.fixture
def make_service(config_source, documents, analytics, settings, clock, sleeper):
    from variant_sdk.tier3_platform.experiment_service import ExperimentService

    def _make(**overrides):
        kwargs = {
            "config_source": config_source,
            "documents": documents,
            "analytics": analytics,
            "settings": settings,
            "clock": clock,
            "sleep": sleeper,
        }
        kwargs.update(overrides)
        return ExperimentService(**kwargs)

    return _make

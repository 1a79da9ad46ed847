"""Tests for tier0_core modules."""
from __future__ import annotations

import pytest
from prometheus_client import REGISTRY
from pydantic import ValidationError as PydanticValidationError

from variant_sdk.tier0_core import errors, metrics
from variant_sdk.tier0_core.config import EngineSettings, _reset_settings, get_settings
from variant_sdk.tier0_core.errors import (
    AssignmentExistsError,
    CatalogDecodeError,
    CatalogError,
    ConfigError,
    ConfigFetchFailedError,
    ConfigMaxRetriesExceededError,
    ConfigNotInitializedError,
    ConfigValidationError,
    EngineError,
    StoreError,
    UnknownVariantError,
)
from variant_sdk.tier0_core.logging import _REDACTED, _redact_processor, get_logger
from variant_sdk.tier0_core.values import (
    BoolValue,
    FloatValue,
    IntValue,
    ListValue,
    MapValue,
    StringValue,
    config_value_from_json,
    extract,
)


# ── errors ─────────────────────────────────────────────────────────────────

class TestErrors:
    def test_engine_error_has_code_and_detail(self):
        e = EngineError("boom", experiment_id="pricing_v2")
        assert e.code == "engine_error"
        assert e.detail == "boom"
        assert e.metadata == {"experiment_id": "pricing_v2"}
        assert "boom" in str(e)

    def test_code_override(self):
        e = ConfigError("custom", code="custom_code")
        assert e.code == "custom_code"

    def test_validation_error_names_key(self):
        e = ConfigValidationError("max_books_limit", "Value must be positive")
        assert isinstance(e, ConfigError)
        assert e.key == "max_books_limit"
        assert e.reason == "Value must be positive"
        assert "max_books_limit" in str(e)

    def test_fetch_failed_carries_status(self):
        e = ConfigFetchFailedError("offline", status="failure")
        assert e.status == "failure"
        assert e.code == "fetch_failed"

    def test_max_retries_carries_attempts(self):
        e = ConfigMaxRetriesExceededError(attempts=3)
        assert e.attempts == 3
        assert e.metadata["attempts"] == 3

    def test_not_initialized_default_message(self):
        e = ConfigNotInitializedError()
        assert e.code == "not_initialized"
        assert "activated" in e.detail

    def test_hierarchy(self):
        assert issubclass(CatalogDecodeError, CatalogError)
        assert issubclass(AssignmentExistsError, StoreError)
        assert issubclass(UnknownVariantError, EngineError)

    def test_to_dict_stringifies_metadata(self):
        d = ConfigMaxRetriesExceededError(attempts=3).to_dict()
        assert d["error"]["code"] == "max_retries_exceeded"
        assert d["error"]["metadata"] == {"attempts": "3"}

    def test_to_dict_without_metadata(self):
        d = CatalogError("nothing loaded").to_dict()
        assert "metadata" not in d["error"]

    def test_capture_follows_error_backend_setting(self, monkeypatch):
        captured = []
        monkeypatch.setattr(errors, "_capture_sentry", captured.append)

        ConfigError("quiet")
        assert captured == []

        monkeypatch.setenv("VARIANT_ERROR_BACKEND", "sentry")
        _reset_settings()
        e = ConfigError("reported")
        assert captured == [e]


# ── config ─────────────────────────────────────────────────────────────────

class TestSettings:
    def test_defaults(self):
        s = EngineSettings()
        assert s.min_refresh_interval == 3600.0
        assert s.max_attempts == 3
        assert s.base_delay == 1.0
        assert s.catalog_key == "experiments"
        assert s.catalog_refresh_interval == 300.0
        assert s.assignments_collection == "userExperimentAssignments"

    def test_test_environment_from_conftest(self):
        s = get_settings()
        assert s.environment == "test"
        assert s.error_backend == "none"

    def test_env_override(self, monkeypatch):
        monkeypatch.setenv("VARIANT_FETCH_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("VARIANT_DOCUMENTS_BACKEND", "LOCAL")
        _reset_settings()
        s = get_settings()
        assert s.max_attempts == 5
        assert s.documents_backend == "local"

    def test_settings_are_cached(self):
        assert get_settings() is get_settings()

    def test_invalid_environment_rejected(self, monkeypatch):
        monkeypatch.setenv("APP_ENV", "moon")
        with pytest.raises(PydanticValidationError):
            EngineSettings()

    def test_zero_attempts_rejected(self, monkeypatch):
        monkeypatch.setenv("VARIANT_FETCH_MAX_ATTEMPTS", "0")
        with pytest.raises(PydanticValidationError):
            EngineSettings()


# ── metrics ────────────────────────────────────────────────────────────────

def _sample(name: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class TestMetrics:
    def test_labelled_counter_increments(self):
        labels = {"service": get_settings().app_name, "env": "test", "result": "created"}
        before = _sample("variant_assignments_total", **labels)
        metrics.assignments_total(result="created").inc()
        assert _sample("variant_assignments_total", **labels) == before + 1

    def test_counter_without_extra_labels(self):
        labels = {"service": get_settings().app_name, "env": "test"}
        before = _sample("variant_config_fetch_attempts_total", **labels)
        metrics.config_fetch_attempts_total().inc()
        assert _sample("variant_config_fetch_attempts_total", **labels) == before + 1

    def test_histogram_observes(self):
        labels = {"service": get_settings().app_name, "env": "test"}
        before = _sample("variant_config_fetch_duration_seconds_count", **labels)
        metrics.config_fetch_duration().observe(0.1)
        assert _sample("variant_config_fetch_duration_seconds_count", **labels) == before + 1

    def test_default_labels_follow_settings(self, monkeypatch):
        monkeypatch.setenv("APP_NAME", "library-app")
        _reset_settings()
        labels = {"service": "library-app", "env": "test", "source": "documents"}
        before = _sample("variant_catalog_load_total", **labels)
        metrics.catalog_load_total(source="documents").inc()
        assert _sample("variant_catalog_load_total", **labels) == before + 1


# ── logging ────────────────────────────────────────────────────────────────

class TestLogging:
    def test_get_logger_returns_logger(self):
        log = get_logger("variant_sdk.test")
        assert hasattr(log, "info")

    def test_redacts_secrets_and_raw_values(self):
        event = {"event": "config.snapshot.activated", "token": "abc", "values": {"k": 1}, "keys": 3}
        out = _redact_processor(None, "info", event)
        assert out["token"] == _REDACTED
        assert out["values"] == _REDACTED
        assert out["keys"] == 3


# ── values ─────────────────────────────────────────────────────────────────

class TestValues:
    def test_bool_is_not_int(self):
        assert isinstance(config_value_from_json(True), BoolValue)
        assert isinstance(config_value_from_json(1), IntValue)

    def test_scalars(self):
        assert config_value_from_json(2.99) == FloatValue(value=2.99)
        assert config_value_from_json("x") == StringValue(value="x")

    def test_nested(self):
        v = config_value_from_json({"tiers": [1, 2], "label": "a"})
        assert isinstance(v, MapValue)
        assert isinstance(v.value["tiers"], ListValue)
        assert v.to_python() == {"tiers": [1, 2], "label": "a"}

    def test_null_rejected(self):
        with pytest.raises(ValueError):
            config_value_from_json(None)

    def test_extract_matching_type(self):
        assert extract(IntValue(value=30), 20) == 30
        assert extract(StringValue(value="hi"), "") == "hi"
        assert extract(BoolValue(value=True), False) is True

    def test_extract_widens_int_to_float(self):
        result = extract(IntValue(value=3), 0.0)
        assert result == 3.0
        assert isinstance(result, float)

    def test_extract_mismatch_returns_default(self):
        assert extract(StringValue(value="30"), 20) == 20
        assert extract(FloatValue(value=2.5), 1) == 1
        assert extract(IntValue(value=1), False) is False

    def test_extract_missing_returns_default(self):
        assert extract(None, 5) == 5

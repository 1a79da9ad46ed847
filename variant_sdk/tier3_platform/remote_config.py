"""
variant_sdk.tier3_platform.remote_config
──────────────────────────────────────────
Resilient fetch-and-activate of the remote key/value configuration.

- Freshness gate: a snapshot younger than ``min_refresh_interval`` is served
  without touching the network. Concurrent callers share one in-flight fetch.
- Retry: up to ``max_attempts`` tries with exponential backoff
  (``base_delay * 2 ** (attempt - 1)``) on transport errors, non-success
  fetch statuses and failed activations.
- Validation: every required key is checked before the snapshot replaces
  the active one. A rejected snapshot never becomes visible; the last
  known-good snapshot stays active (marked ``stale``).

The source itself is a capability interface; its wire protocol (Firebase
Remote Config, a JSON endpoint, ...) lives outside this package.
"""
from __future__ import annotations

import math
import time
from collections.abc import Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Protocol, Type, runtime_checkable

from pydantic import BaseModel, ConfigDict

from variant_sdk.tier0_core import metrics
from variant_sdk.tier0_core.config import EngineSettings, get_settings
from variant_sdk.tier0_core.errors import (
    ConfigActivationFailedError,
    ConfigFetchFailedError,
    ConfigMaxRetriesExceededError,
    ConfigNotInitializedError,
    ConfigValidationError,
)
from variant_sdk.tier0_core.logging import get_logger
from variant_sdk.tier1_runtime.clock import Clock
from variant_sdk.tier1_runtime.retry import RetriesExhausted, SleepFn, call_with_backoff
from variant_sdk.tier1_runtime.validate import (
    REMOTE_CONFIG_DEFAULTS,
    RequiredRemoteConfig,
    validate_snapshot,
)
from variant_sdk.tier2_reliability.cache import SingleFlight
from variant_sdk.tier2_reliability.fallback import LastKnownGood

logger = get_logger(__name__)

_TRUE_STRINGS = frozenset({"1", "true", "yes", "on", "y", "t"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off", "n", "f", ""})


class FetchStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    THROTTLED = "throttled"
    NO_FETCH_YET = "no_fetch_yet"
    STALE = "stale"


class ConfigSnapshot(BaseModel):
    """An activated, validated set of remote config values."""

    model_config = ConfigDict(frozen=True)

    values: dict[str, Any]
    fetched_at: datetime
    fetch_status: FetchStatus = FetchStatus.SUCCESS
    min_refresh_interval: float

    def get(self, key: str) -> Any:
        return self.values.get(key)


# ── Source protocol ───────────────────────────────────────────────────────────

@runtime_checkable
class KeyValueConfigSource(Protocol):
    """Push/pull key/value channel (e.g. Firebase Remote Config)."""

    async def fetch(self) -> tuple[Mapping[str, Any], FetchStatus]: ...

    async def activate(self) -> bool: ...

    def set_defaults(self, defaults: Mapping[str, Any]) -> None: ...


class MockConfigSource:
    """
    Scriptable in-memory source for tests and local development.

    ``fail_times`` makes the next N fetches raise ConnectionError;
    ``always_fail`` makes every fetch raise. ``status`` and ``activate_ok``
    control the non-exceptional failure paths.
    """

    def __init__(
        self,
        values: Mapping[str, Any] | None = None,
        *,
        status: FetchStatus = FetchStatus.SUCCESS,
        activate_ok: bool = True,
        fail_times: int = 0,
        always_fail: bool = False,
    ) -> None:
        self.values: dict[str, Any] = dict(values or {})
        self.status = status
        self.activate_ok = activate_ok
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.defaults: dict[str, Any] = {}
        self.fetch_count = 0
        self.activate_count = 0

    async def fetch(self) -> tuple[Mapping[str, Any], FetchStatus]:
        self.fetch_count += 1
        if self.always_fail:
            raise ConnectionError("remote config unreachable")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("remote config unreachable")
        return dict(self.values), self.status

    async def activate(self) -> bool:
        self.activate_count += 1
        return self.activate_ok

    def set_defaults(self, defaults: Mapping[str, Any]) -> None:
        self.defaults = dict(defaults)


# ── Value coercion ────────────────────────────────────────────────────────────

def _normalize(values: Mapping[str, Any], required: frozenset[str]) -> dict[str, Any]:
    """
    Decode byte payloads to text once, at the boundary. Undecodable bytes
    reject the snapshot only for *required* keys; other keys keep the raw
    bytes for their consumer to judge.
    """
    out: dict[str, Any] = {}
    for key, value in values.items():
        if isinstance(value, (bytes, bytearray)):
            try:
                value = bytes(value).decode("utf-8")
            except UnicodeDecodeError:
                if key in required:
                    raise ConfigValidationError(key, "value is not valid UTF-8") from None
                value = bytes(value)
        out[key] = value
    return out


def _as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
    return None


def _as_float(value: Any) -> float | None:
    """Finite floats only; inf and nan count as unparseable."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        f = float(value)
    elif isinstance(value, str):
        try:
            f = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    return f if math.isfinite(f) else None


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    f = _as_float(value)
    return int(f) if f is not None else None


def _as_string(value: Any) -> str | None:
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    return None


# ── Fetcher ───────────────────────────────────────────────────────────────────

class ConfigFetcher:
    """
    Fetch, activate and validate remote config; serve the last good snapshot.

    Usage::

        fetcher = ConfigFetcher(source)
        snapshot = await fetcher.fetch_and_activate()
        limit = fetcher.get_int("max_books_limit", 100)
    """

    def __init__(
        self,
        source: KeyValueConfigSource,
        *,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
        schema: Type[BaseModel] = RequiredRemoteConfig,
        defaults: Mapping[str, Any] | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        s = settings or get_settings()
        self._source = source
        self._clock = clock or Clock()
        self._schema = schema
        self._required_keys = frozenset(schema.model_fields)
        self._sleep = sleep
        self.min_refresh_interval = s.min_refresh_interval
        self.max_attempts = s.max_attempts
        self.base_delay = s.base_delay
        self.max_delay = s.max_delay

        self._defaults = dict(REMOTE_CONFIG_DEFAULTS if defaults is None else defaults)
        source.set_defaults(self._defaults)

        self._active: LastKnownGood[ConfigSnapshot] = LastKnownGood(self._clock)
        self._flights = SingleFlight()
        self.last_fetch_status = FetchStatus.NO_FETCH_YET
        self.last_fetch_time: datetime | None = None

    # ── Fetch ─────────────────────────────────────────────────────────────

    async def fetch_and_activate(self) -> ConfigSnapshot:
        """
        Return a fresh snapshot, fetching only when the gate is open.

        Raises ConfigMaxRetriesExceededError when every attempt failed and
        ConfigValidationError when the fetched values were rejected. In both
        cases ``snapshot`` still returns the previous good snapshot.
        """
        if self._active.is_fresh(self.min_refresh_interval):
            metrics.config_fetch_total(outcome="throttled").inc()
            logger.debug("config.fetch.throttled", age=self._active.age())
            return self._active.value  # type: ignore[return-value]
        return await self._flights.run("fetch", self._refresh)

    async def _refresh(self) -> ConfigSnapshot:
        started = time.monotonic()
        try:
            raw = await call_with_backoff(
                self._attempt,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                retry_on=(ConfigFetchFailedError, ConfigActivationFailedError),
                sleep=self._sleep,
                operation="config.fetch",
            )
        except RetriesExhausted as exc:
            self._record_failure()
            metrics.config_fetch_total(outcome="failed").inc()
            logger.error(
                "config.fetch.max_retries_exceeded",
                attempts=exc.attempts,
                error=str(exc.last_error),
                serving_last_good=self._active.has_value,
            )
            raise ConfigMaxRetriesExceededError(
                attempts=exc.attempts, last_error=str(exc.last_error)
            ) from exc.last_error
        finally:
            metrics.config_fetch_duration().observe(time.monotonic() - started)

        try:
            merged = {**self._defaults, **_normalize(raw, self._required_keys)}
            validate_snapshot(merged, self._schema)
        except ConfigValidationError as exc:
            self._record_failure()
            metrics.config_fetch_total(outcome="rejected").inc()
            logger.error("config.snapshot.rejected", key=exc.key, reason=exc.reason)
            raise

        snapshot = ConfigSnapshot(
            values=merged,
            fetched_at=self._clock.now(),
            fetch_status=FetchStatus.SUCCESS,
            min_refresh_interval=self.min_refresh_interval,
        )
        self._active.update(snapshot)
        self.last_fetch_status = FetchStatus.SUCCESS
        self.last_fetch_time = snapshot.fetched_at
        metrics.config_fetch_total(outcome="success").inc()
        logger.info("config.snapshot.activated", keys=len(merged))
        return snapshot

    async def _attempt(self) -> Mapping[str, Any]:
        metrics.config_fetch_attempts_total().inc()
        try:
            values, status = await self._source.fetch()
        except Exception as exc:
            raise ConfigFetchFailedError(str(exc), status=FetchStatus.FAILURE) from exc
        if status != FetchStatus.SUCCESS:
            raise ConfigFetchFailedError(f"fetch returned status {status.value!r}", status=status)
        try:
            activated = await self._source.activate()
        except Exception as exc:
            raise ConfigActivationFailedError(str(exc)) from exc
        if not activated:
            raise ConfigActivationFailedError("activate() reported failure")
        return values

    def _record_failure(self) -> None:
        self.last_fetch_status = FetchStatus.FAILURE
        self.last_fetch_time = self._clock.now()
        current = self._active.value
        if current is not None and current.fetch_status != FetchStatus.STALE:
            self._active.replace(current.model_copy(update={"fetch_status": FetchStatus.STALE}))

    async def aclose(self) -> None:
        """Cancel any in-flight fetch (including pending backoff sleeps)."""
        await self._flights.cancel_all()

    # ── State ─────────────────────────────────────────────────────────────

    @property
    def snapshot(self) -> ConfigSnapshot | None:
        """The last known-good snapshot, or None before the first activation."""
        return self._active.value

    @property
    def is_initialized(self) -> bool:
        return self._active.has_value

    def has_valid_data(self) -> bool:
        current = self._active.value
        if current is None:
            return False
        try:
            validate_snapshot(current.values, self._schema)
        except ConfigValidationError:
            return False
        return True

    # ── Typed accessors ───────────────────────────────────────────────────

    def _raw(self, key: str) -> Any:
        current = self._active.value
        if current is not None and key in current.values:
            return current.values[key]
        return self._defaults.get(key)

    def get_string(self, key: str, default: str = "") -> str:
        value = _as_string(self._raw(key))
        return default if value is None else value

    def get_bool(self, key: str, default: bool = False) -> bool:
        value = _as_bool(self._raw(key))
        return default if value is None else value

    def get_int(self, key: str, default: int = 0) -> int:
        value = _as_int(self._raw(key))
        return default if value is None else value

    def get_float(self, key: str, default: float = 0.0) -> float:
        value = _as_float(self._raw(key))
        return default if value is None else value

    def _require_initialized(self) -> None:
        if not self._active.has_value:
            raise ConfigNotInitializedError()

    def get_validated_string(self, key: str) -> str:
        self._require_initialized()
        value = self.get_string(key)
        if not value:
            raise ConfigValidationError(key, "Value is empty")
        return value

    def get_validated_bool(self, key: str) -> bool:
        self._require_initialized()
        value = _as_bool(self._raw(key))
        if value is None:
            raise ConfigValidationError(key, "Value is not a boolean")
        return value

    def get_validated_int(self, key: str) -> int:
        self._require_initialized()
        value = _as_int(self._raw(key))
        if value is None or value <= 0:
            raise ConfigValidationError(key, "Value must be positive")
        return value

    def get_validated_float(self, key: str) -> float:
        self._require_initialized()
        value = _as_float(self._raw(key))
        if value is None or value < 0:
            raise ConfigValidationError(key, "Value must be non-negative")
        return value


__all__ = [
    "FetchStatus", "ConfigSnapshot", "KeyValueConfigSource", "MockConfigSource",
    "ConfigFetcher",
]

"""
variant_sdk.tier0_core.errors
──────────────────────────────
Error taxonomy for the experiment engine. Every error carries a stable
machine-readable code, an internal detail string and free-form metadata.
Raising an EngineError here automatically reports it if an error backend
is configured.

Minimal stack: Sentry OSS (optional)
Select via:    VARIANT_ERROR_BACKEND=sentry|none
"""
from __future__ import annotations

import os
from typing import Any

from variant_sdk.tier0_core.config import _reset_settings, get_settings


# ── Base error ────────────────────────────────────────────────────────────────

class EngineError(Exception):
    """
    Base class for all engine errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - detail: internal context, suitable for logs and diagnostics
    - metadata: structured extras (keys, statuses, attempt counts)
    """

    code: str = "engine_error"

    def __init__(
        self,
        detail: str = "An unexpected engine error occurred.",
        *,
        code: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.detail = detail
        self.metadata = metadata
        super().__init__(detail)
        _capture(self)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"error": {"code": self.code, "message": self.detail}}
        if self.metadata:
            d["error"]["metadata"] = {k: str(v) for k, v in self.metadata.items()}
        return d


# ── Remote config ─────────────────────────────────────────────────────────────

class ConfigError(EngineError):
    """Remote configuration could not be fetched, activated or trusted."""
    code = "config_error"


class ConfigFetchFailedError(ConfigError):
    code = "fetch_failed"

    def __init__(self, detail: str = "Remote config fetch failed.", *, status: Any = None, **metadata: Any) -> None:
        self.status = status
        super().__init__(detail, status=status, **metadata)


class ConfigActivationFailedError(ConfigError):
    code = "activation_failed"


class ConfigMaxRetriesExceededError(ConfigError):
    code = "max_retries_exceeded"

    def __init__(self, detail: str = "Remote config fetch retries exhausted.", *, attempts: int = 0, **metadata: Any) -> None:
        self.attempts = attempts
        super().__init__(detail, attempts=attempts, **metadata)


class ConfigValidationError(ConfigError):
    """A fetched value broke its type or range rule."""
    code = "validation_failed"

    def __init__(self, key: str, reason: str, **metadata: Any) -> None:
        self.key = key
        self.reason = reason
        super().__init__(f"Config key {key!r} is invalid: {reason}", key=key, reason=reason, **metadata)


class ConfigNotInitializedError(ConfigError):
    code = "not_initialized"

    def __init__(self, detail: str = "Remote config has not been activated yet.", **metadata: Any) -> None:
        super().__init__(detail, **metadata)


# ── Catalog ───────────────────────────────────────────────────────────────────

class CatalogError(EngineError):
    """Neither the snapshot nor the document store produced a catalog."""
    code = "catalog_error"


class CatalogDecodeError(CatalogError):
    code = "catalog_decode_failed"


# ── Persistence ───────────────────────────────────────────────────────────────

class ConflictError(EngineError):
    """Create-if-absent hit an existing document."""
    code = "conflict"


class StoreError(EngineError):
    """Read or write failure against the persistent assignment store."""
    code = "store_error"


class AssignmentExistsError(StoreError):
    """Lost the conditional write: an assignment is already persisted."""
    code = "assignment_exists"


# ── Experiments ───────────────────────────────────────────────────────────────

class ExperimentError(EngineError):
    code = "experiment_error"


class ExperimentNotFoundError(ExperimentError):
    code = "experiment_not_found"


class UnknownVariantError(ExperimentError):
    code = "unknown_variant"


# ── Error capture backend ─────────────────────────────────────────────────────

def _capture(error: EngineError) -> None:
    """Send error to configured backend. Called automatically by EngineError.__init__."""
    if get_settings().error_backend == "sentry":
        _capture_sentry(error)


def _capture_sentry(error: EngineError) -> None:
    try:
        import sentry_sdk
    except ImportError:
        return
    sentry_sdk.capture_message(
        str(error),
        level="warning",
        extras={"code": error.code, **{k: str(v) for k, v in error.metadata.items()}},
    )


def configure_sentry(dsn: str, **kwargs: Any) -> None:
    """Initialize Sentry. Call once at application startup."""
    import sentry_sdk

    sentry_sdk.init(dsn=dsn, **kwargs)
    os.environ["VARIANT_ERROR_BACKEND"] = "sentry"
    _reset_settings()


__all__ = [
    "EngineError",
    "ConfigError", "ConfigFetchFailedError", "ConfigActivationFailedError",
    "ConfigMaxRetriesExceededError", "ConfigValidationError", "ConfigNotInitializedError",
    "CatalogError", "CatalogDecodeError",
    "ConflictError", "StoreError", "AssignmentExistsError",
    "ExperimentError", "ExperimentNotFoundError", "UnknownVariantError",
    "configure_sentry",
]

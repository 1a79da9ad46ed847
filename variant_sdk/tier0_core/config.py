"""
variant_sdk.tier0_core.config
────────────────────────────────
Typed engine settings with env layering. Reads from .env → environment
variables. All fields are typed via Pydantic; an invalid value fails at
construction time, not in the middle of a fetch.

Minimal stack: pydantic-settings + python-dotenv
"""
from __future__ import annotations

from functools import lru_cache

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    """
    Typed experiment-engine configuration.
    Engine variables are prefixed with VARIANT_; the environment name uses APP_ENV.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ───────────────────────────────────────────────────────────
    app_name: str = Field(default="variant-sdk", alias="APP_NAME")
    environment: str = Field(default="development", alias="APP_ENV")

    # ── Remote config fetch ───────────────────────────────────────────────────
    min_refresh_interval: float = Field(
        default=3600.0, ge=0, alias="VARIANT_MIN_REFRESH_INTERVAL"
    )
    max_attempts: int = Field(default=3, ge=1, alias="VARIANT_FETCH_MAX_ATTEMPTS")
    base_delay: float = Field(default=1.0, ge=0, alias="VARIANT_FETCH_BASE_DELAY")
    max_delay: float = Field(default=60.0, ge=0, alias="VARIANT_FETCH_MAX_DELAY")

    # ── Catalog ───────────────────────────────────────────────────────────────
    catalog_key: str = Field(default="experiments", alias="VARIANT_CATALOG_KEY")
    catalog_refresh_interval: float = Field(
        default=300.0, ge=0, alias="VARIANT_CATALOG_REFRESH_INTERVAL"
    )
    experiments_collection: str = Field(
        default="experiments", alias="VARIANT_EXPERIMENTS_COLLECTION"
    )

    # ── Assignments ───────────────────────────────────────────────────────────
    assignments_collection: str = Field(
        default="userExperimentAssignments", alias="VARIANT_ASSIGNMENTS_COLLECTION"
    )
    documents_backend: str = Field(default="memory", alias="VARIANT_DOCUMENTS_BACKEND")
    documents_path: str = Field(
        default="/tmp/variant_sdk_documents", alias="VARIANT_DOCUMENTS_PATH"
    )

    # ── Analytics ─────────────────────────────────────────────────────────────
    analytics_backend: str = Field(default="log", alias="VARIANT_ANALYTICS_BACKEND")

    # ── Logging ───────────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="VARIANT_LOG_LEVEL")
    log_format: str = Field(default="json", alias="VARIANT_LOG_FORMAT")

    # ── Error reporting ───────────────────────────────────────────────────────
    error_backend: str = Field(default="none", alias="VARIANT_ERROR_BACKEND")

    @field_validator("environment")
    @classmethod
    def validate_env(cls, v: str) -> str:
        allowed = {"development", "staging", "production", "test"}
        if v.lower() not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v.lower()

    @field_validator("documents_backend", "analytics_backend", "log_format", "error_backend")
    @classmethod
    def lower(cls, v: str) -> str:
        return v.lower()


@lru_cache(maxsize=1)
def get_settings() -> EngineSettings:
    """
    Return the singleton engine settings. Cached after first call.
    Call _reset_settings() in tests to pick up new env vars.
    """
    return EngineSettings()


def _reset_settings() -> None:
    """For tests: clear the settings cache."""
    get_settings.cache_clear()


__all__ = ["EngineSettings", "get_settings"]

"""
variant_sdk.tier1_runtime.validate
──────────────────────────────────────
Snapshot validation via Pydantic v2. Every required remote-config key is
checked against its type and range rule before a snapshot may replace the
active one. Raises ConfigValidationError (not raw Pydantic errors) naming
the first offending key, so a bad remote push is rejected with a reason.
"""
from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from variant_sdk.tier0_core.errors import ConfigValidationError

T = TypeVar("T", bound=BaseModel)


class RequiredRemoteConfig(BaseModel):
    """Keys every activated snapshot must carry, with their accepted ranges."""

    model_config = ConfigDict(extra="ignore")

    feature_enabled: bool
    max_books_limit: int = Field(gt=0, le=1000)
    api_timeout: int = Field(gt=0, le=300)  # seconds


REMOTE_CONFIG_DEFAULTS: dict[str, Any] = {
    "feature_enabled": False,
    "max_books_limit": 100,
    "api_timeout": 30,
}


def validate_snapshot(values: Mapping[str, Any], schema: Type[T]) -> T:
    """
    Validate raw snapshot values against *schema*.

    Usage:
        validate_snapshot({"max_books_limit": -5, ...}, RequiredRemoteConfig)
        # ConfigValidationError: Config key 'max_books_limit' is invalid: ...
    """
    try:
        return schema.model_validate(dict(values))
    except PydanticValidationError as exc:
        errors = exc.errors()
        fields = {
            ".".join(str(loc) for loc in err["loc"]) or "<root>": err["msg"]
            for err in errors
        }
        key, reason = next(iter(fields.items()))
        raise ConfigValidationError(key, reason, fields=fields) from exc


__all__ = ["RequiredRemoteConfig", "REMOTE_CONFIG_DEFAULTS", "validate_snapshot"]

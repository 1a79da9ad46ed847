"""
variant_sdk.tier3_platform.experiments
─────────────────────────────────────────
Experiment data model and weighted variant selection.

Experiments and variants are authored by operators elsewhere and are
read-only here. Selection is classic roulette-wheel sampling over the
declared weights, walked in declared order, driven by an injectable random
source so tests can pin exact outcomes at cumulative-weight boundaries.

JSON shape (catalog key and experiment documents)::

    {"id": "pricing_v2", "status": "active",
     "variants": [{"id": "A", "name": "Control", "weight": 0.5,
                   "config": {"monthlyPrice": 2.99}}]}
"""
from __future__ import annotations

import random
from collections.abc import Iterable, Sequence
from enum import Enum
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from variant_sdk.tier0_core.values import ConfigValue, config_value_from_json, extract


class ExperimentStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


# Lifecycle states some authoring tools emit; none of them are assignable.
_INACTIVE_ALIASES = frozenset({"inactive", "draft", "paused", "completed"})


class Variant(BaseModel):
    """One arm of an experiment: a relative sampling weight plus config values."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    name: str
    weight: float = Field(ge=0, allow_inf_nan=False)
    config: dict[str, ConfigValue] = Field(default_factory=dict)

    @field_validator("config", mode="before")
    @classmethod
    def _decode_config(cls, v: Any) -> Any:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("config must be an object")
        return {str(k): config_value_from_json(raw) for k, raw in v.items()}

    @field_serializer("config")
    def _encode_config(self, config: dict[str, ConfigValue]) -> dict[str, Any]:
        return {k: v.to_python() for k, v in config.items()}

    def value(self, key: str) -> ConfigValue | None:
        return self.config.get(key)

    def get(self, key: str, default: Any) -> Any:
        """Typed lookup: the stored value if it matches ``type(default)``, else default."""
        return extract(self.config.get(key), default)


class Experiment(BaseModel):
    """A named A/B test. Only ``active`` experiments with positive total weight run."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    id: str = Field(min_length=1)
    status: ExperimentStatus
    variants: list[Variant] = Field(default_factory=list)
    name: str | None = None
    description: str | None = None

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            lowered = v.strip().lower()
            if lowered in _INACTIVE_ALIASES:
                return ExperimentStatus.INACTIVE
            return lowered
        return v

    @model_validator(mode="after")
    def _unique_variant_ids(self) -> "Experiment":
        seen: set[str] = set()
        for variant in self.variants:
            if variant.id in seen:
                raise ValueError(f"duplicate variant id {variant.id!r} in experiment {self.id!r}")
            seen.add(variant.id)
        return self

    @property
    def is_running(self) -> bool:
        """Active and assignable: at least one variant carries positive weight."""
        return self.status == ExperimentStatus.ACTIVE and any(v.weight > 0 for v in self.variants)

    def variant(self, variant_id: str) -> Variant | None:
        for v in self.variants:
            if v.id == variant_id:
                return v
        return None


# ── Random source ─────────────────────────────────────────────────────────────

@runtime_checkable
class RandomSource(Protocol):
    """Anything with ``random() -> float`` in [0, 1), e.g. ``random.Random``."""

    def random(self) -> float: ...


class SequenceRandom:
    """Deterministic source replaying fixed draws; raises once exhausted."""

    def __init__(self, values: Iterable[float]) -> None:
        self._values = list(values)
        self._index = 0

    def random(self) -> float:
        if self._index >= len(self._values):
            raise IndexError("SequenceRandom exhausted")
        value = self._values[self._index]
        self._index += 1
        return value


# ── Assigner ──────────────────────────────────────────────────────────────────

class VariantAssigner:
    """
    Weighted random selection over an ordered variant list.

    Draw ``r`` uniformly in ``[0, total_weight)``, walk the variants in order
    accumulating weight, and return the first whose cumulative weight exceeds
    ``r``. Zero-weight variants are never chosen. If rounding lets the walk
    run off the end, the last positive-weight variant is returned.
    """

    def __init__(self, random_source: RandomSource | None = None) -> None:
        self._random = random_source or random.Random()

    def assign(self, variants: Sequence[Variant]) -> Variant:
        if not variants:
            raise ValueError("cannot assign from an empty variant list")
        total = sum(v.weight for v in variants)
        if total <= 0:
            raise ValueError("cannot assign when every variant has weight 0")

        r = self._random.random() * total
        cumulative = 0.0
        for variant in variants:
            cumulative += variant.weight
            if cumulative > r:
                return variant

        return next(v for v in reversed(variants) if v.weight > 0)


__all__ = [
    "ExperimentStatus", "Variant", "Experiment",
    "RandomSource", "SequenceRandom", "VariantAssigner",
]

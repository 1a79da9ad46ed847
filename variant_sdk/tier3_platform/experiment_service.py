"""
variant_sdk.tier3_platform.experiment_service
────────────────────────────────────────────────
The single entry point the application talks to:

    variant = await service.get_variant("pricing_v2", user_id)

Per call: resolve the catalog (refreshed when older than
``catalog_refresh_interval``, last good catalog kept on failure) → find the
experiment → reuse the persisted assignment, or pick a variant and persist
it with a conditional write → return the variant.

Experimentation is additive, never load-bearing: every backend failure
degrades to ``None`` ("no experiment running") or to a best-effort variant,
never to an exception on the request path.

Concurrency: calls for the same ``(user_id, experiment_id)`` share one
resolution task inside a process. Across processes the document store's
create-if-absent is the source of truth; the loser of a race re-reads and
returns the winner's variant.
"""
from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any

from variant_sdk.tier0_core import metrics
from variant_sdk.tier0_core.config import EngineSettings, get_settings
from variant_sdk.tier0_core.errors import (
    AssignmentExistsError,
    CatalogError,
    ExperimentNotFoundError,
    StoreError,
    UnknownVariantError,
)
from variant_sdk.tier0_core.logging import get_logger
from variant_sdk.tier1_runtime.clock import Clock
from variant_sdk.tier1_runtime.retry import SleepFn
from variant_sdk.tier2_reliability.cache import SingleFlight
from variant_sdk.tier2_reliability.documents import DocumentStore, build_document_store
from variant_sdk.tier2_reliability.fallback import LastKnownGood
from variant_sdk.tier3_platform.analytics import (
    EVENT_EXPERIMENT_ASSIGNED,
    PROPERTY_EXPERIMENT_VARIANT,
    AnalyticsSink,
    build_analytics_sink,
)
from variant_sdk.tier3_platform.assignments import AssignmentStore, UserExperimentAssignment
from variant_sdk.tier3_platform.catalog import Catalog, ExperimentCatalogLoader
from variant_sdk.tier3_platform.experiments import RandomSource, Variant, VariantAssigner
from variant_sdk.tier3_platform.remote_config import ConfigFetcher, KeyValueConfigSource

logger = get_logger(__name__)

USAGE_LIMITS_EXPERIMENT = "usage_limits_experiment"
DEFAULT_SCAN_LIMIT = 20
DEFAULT_BOOK_LIMIT = 25
DEFAULT_RECOMMENDATION_LIMIT = 5


@dataclass(frozen=True)
class PricingConfig:
    monthly_price: float
    annual_price: float


class ExperimentService:
    """
    Orchestrates fetcher, catalog loader, assigner and assignment store.

    Construct one per application and share it; every public coroutine is
    safe to call from concurrent tasks.
    """

    def __init__(
        self,
        config_source: KeyValueConfigSource,
        documents: DocumentStore,
        analytics: AnalyticsSink | None = None,
        *,
        settings: EngineSettings | None = None,
        random_source: RandomSource | None = None,
        clock: Clock | None = None,
        sleep: SleepFn | None = None,
    ) -> None:
        s = settings or get_settings()
        self._clock = clock or Clock()
        self.fetcher = ConfigFetcher(config_source, settings=s, clock=self._clock, sleep=sleep)
        self.catalog_loader = ExperimentCatalogLoader(
            self.fetcher, documents, settings=s, clock=self._clock
        )
        self.assignments = AssignmentStore(documents, settings=s)
        self.assigner = VariantAssigner(random_source)
        self._analytics = analytics or build_analytics_sink()
        self.catalog_refresh_interval = s.catalog_refresh_interval

        self._catalog: LastKnownGood[Catalog] = LastKnownGood(self._clock)
        self._catalog_flight = SingleFlight()
        self._resolutions = SingleFlight()
        self._background: set[asyncio.Task] = set()

    # ── Catalog ───────────────────────────────────────────────────────────

    @property
    def catalog(self) -> Catalog | None:
        return self._catalog.value

    async def refresh_catalog(self) -> Catalog:
        """Reload the catalog now, ignoring its age. Raises CatalogError."""
        return await self._catalog_flight.run("catalog", self._reload_catalog)

    async def _reload_catalog(self) -> Catalog:
        catalog = await self.catalog_loader.load_catalog()
        self._catalog.update(catalog)
        return catalog

    async def _current_catalog(self) -> Catalog | None:
        if self._catalog.is_fresh(self.catalog_refresh_interval):
            return self._catalog.value
        try:
            return await self.refresh_catalog()
        except CatalogError:
            stale = self._catalog.value
            if stale is not None:
                logger.warning("catalog.serving_stale", age=self._catalog.age())
                # hold the stale catalog for another interval before retrying
                self._catalog.update(stale)
            return stale

    # ── Assignment ────────────────────────────────────────────────────────

    async def get_variant(self, experiment_id: str, user_id: str) -> Variant | None:
        """
        Return the user's variant for a running experiment, assigning one on
        first sight. Returns None when the experiment is unknown, inactive,
        has no positive weight, or the catalog is unavailable.
        """
        return await self._resolutions.run(
            (user_id, experiment_id), lambda: self._resolve(experiment_id, user_id)
        )

    async def _resolve(self, experiment_id: str, user_id: str) -> Variant | None:
        catalog = await self._current_catalog()
        if catalog is None:
            metrics.assignments_total(result="not_running").inc()
            logger.info("experiment.catalog_unavailable", experiment_id=experiment_id)
            return None

        experiment = catalog.get(experiment_id)
        if experiment is None or not experiment.is_running:
            metrics.assignments_total(result="not_running").inc()
            logger.debug(
                "experiment.not_running",
                experiment_id=experiment_id,
                found=experiment is not None,
            )
            return None

        existing = await self._read_assignment(user_id, experiment_id)
        if existing is not None:
            metrics.assignments_total(result="reused").inc()
            return self._variant_for(existing, experiment_id, catalog)

        variant = self.assigner.assign(experiment.variants)
        assignment = UserExperimentAssignment(
            user_id=user_id,
            experiment_id=experiment_id,
            variant_id=variant.id,
            assigned_at=self._clock.now(),
        )
        try:
            await self.assignments.create(assignment)
        except AssignmentExistsError:
            metrics.assignments_total(result="race_lost").inc()
            winner = await self._read_assignment(user_id, experiment_id)
            logger.info(
                "assignment.race_lost",
                experiment_id=experiment_id,
                user_id=user_id,
                computed_variant_id=variant.id,
                winner_variant_id=winner.variant_id if winner else None,
            )
            if winner is None:
                return None
            return self._variant_for(winner, experiment_id, catalog)
        except StoreError as exc:
            metrics.assignments_total(result="persist_failed").inc()
            logger.warning(
                "assignment.persist_failed",
                experiment_id=experiment_id,
                user_id=user_id,
                variant_id=variant.id,
                error=str(exc),
            )
            return variant

        metrics.assignments_total(result="created").inc()
        logger.info(
            "assignment.created",
            experiment_id=experiment_id,
            user_id=user_id,
            variant_id=variant.id,
        )
        self._emit_assignment(experiment_id, variant.id, user_id)
        return variant

    async def _read_assignment(
        self, user_id: str, experiment_id: str
    ) -> UserExperimentAssignment | None:
        try:
            return await self.assignments.get(user_id, experiment_id)
        except StoreError as exc:
            logger.warning(
                "assignment.read_failed",
                experiment_id=experiment_id,
                user_id=user_id,
                error=str(exc),
            )
            return None

    def _variant_for(
        self, assignment: UserExperimentAssignment, experiment_id: str, catalog: Catalog
    ) -> Variant | None:
        experiment = catalog.get(experiment_id)
        variant = experiment.variant(assignment.variant_id) if experiment else None
        if variant is None:
            logger.warning(
                "assignment.variant_missing",
                experiment_id=experiment_id,
                user_id=assignment.user_id,
                variant_id=assignment.variant_id,
            )
        return variant

    # ── Analytics (fire-and-forget) ───────────────────────────────────────

    def _emit_assignment(self, experiment_id: str, variant_id: str, user_id: str) -> None:
        self._spawn(
            self._analytics.log_event(
                EVENT_EXPERIMENT_ASSIGNED,
                {"experiment_id": experiment_id, "variant_id": variant_id, "user_id": user_id},
            ),
            EVENT_EXPERIMENT_ASSIGNED,
        )
        self._spawn(
            self._analytics.set_user_property(
                PROPERTY_EXPERIMENT_VARIANT, f"{experiment_id}:{variant_id}"
            ),
            PROPERTY_EXPERIMENT_VARIANT,
        )

    def _spawn(self, call: Awaitable[None], name: str) -> None:
        task = asyncio.ensure_future(self._deliver(call, name))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _deliver(self, call: Awaitable[None], name: str) -> None:
        try:
            await call
        except Exception as exc:
            logger.warning("analytics.delivery_failed", analytics_call=name, error=str(exc))

    async def track_experiment_event(
        self,
        experiment_id: str,
        variant_id: str,
        event: str,
        parameters: dict[str, Any] | None = None,
    ) -> None:
        """Forward a caller's conversion event with the experiment ids attached."""
        params = dict(parameters or {})
        params["experiment_id"] = experiment_id
        params["variant_id"] = variant_id
        await self._deliver(self._analytics.log_event(event, params), event)

    async def flush_analytics(self) -> None:
        """Wait until every scheduled analytics call has finished."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    # ── Derived config lookups ────────────────────────────────────────────

    async def get_config_value(
        self, experiment_id: str, user_id: str, key: str, default: Any
    ) -> Any:
        """Typed config lookup on the user's variant, falling back to *default*."""
        variant = await self.get_variant(experiment_id, user_id)
        if variant is None:
            return default
        return variant.get(key, default)

    async def get_scan_limit(self, user_id: str) -> int:
        return await self.get_config_value(
            USAGE_LIMITS_EXPERIMENT, user_id, "scanLimit", DEFAULT_SCAN_LIMIT
        )

    async def get_book_limit(self, user_id: str) -> int:
        return await self.get_config_value(
            USAGE_LIMITS_EXPERIMENT, user_id, "bookLimit", DEFAULT_BOOK_LIMIT
        )

    async def get_recommendation_limit(self, user_id: str) -> int:
        return await self.get_config_value(
            USAGE_LIMITS_EXPERIMENT, user_id, "recommendationLimit", DEFAULT_RECOMMENDATION_LIMIT
        )

    async def get_pricing_config(self, experiment_id: str, user_id: str) -> PricingConfig | None:
        """Monthly/annual prices from the user's variant; None unless both are numbers."""
        variant = await self.get_variant(experiment_id, user_id)
        if variant is None:
            return None
        monthly = variant.get("monthlyPrice", float("nan"))
        annual = variant.get("annualPrice", float("nan"))
        if math.isnan(monthly) or math.isnan(annual):
            return None
        return PricingConfig(monthly_price=monthly, annual_price=annual)

    async def get_current_variant_id(self, experiment_id: str, user_id: str) -> str | None:
        variant = await self.get_variant(experiment_id, user_id)
        return variant.id if variant else None

    # ── Administration ────────────────────────────────────────────────────

    async def reset(self, user_id: str, experiment_id: str) -> None:
        """Forget a user's assignment so the next call assigns afresh. Raises StoreError."""
        await self.assignments.reset(user_id, experiment_id)

    async def force_assignment(
        self, user_id: str, experiment_id: str, variant_id: str
    ) -> Variant:
        """
        QA override: bind the user to *variant_id*, replacing any assignment.

        Raises ExperimentNotFoundError, UnknownVariantError or StoreError.
        No analytics are emitted for overrides.
        """
        catalog = await self._current_catalog()
        experiment = catalog.get(experiment_id) if catalog else None
        if experiment is None:
            raise ExperimentNotFoundError(
                f"experiment {experiment_id!r} is not in the catalog", experiment_id=experiment_id
            )
        variant = experiment.variant(variant_id)
        if variant is None:
            raise UnknownVariantError(
                f"variant {variant_id!r} is not part of experiment {experiment_id!r}",
                experiment_id=experiment_id,
                variant_id=variant_id,
            )
        await self.assignments.overwrite(
            UserExperimentAssignment(
                user_id=user_id,
                experiment_id=experiment_id,
                variant_id=variant_id,
                assigned_at=self._clock.now(),
            )
        )
        logger.warning(
            "assignment.forced", experiment_id=experiment_id, user_id=user_id, variant_id=variant_id
        )
        return variant

    async def aclose(self) -> None:
        """Cancel in-flight fetches and resolutions, then drain analytics."""
        await self._resolutions.cancel_all()
        await self._catalog_flight.cancel_all()
        await self.fetcher.aclose()
        await self.flush_analytics()


def build_experiment_service(
    config_source: KeyValueConfigSource,
    *,
    documents: DocumentStore | None = None,
    analytics: AnalyticsSink | None = None,
    **kwargs: Any,
) -> ExperimentService:
    """
    Wire a service with the backends selected by settings.

    Usage::

        service = build_experiment_service(my_remote_config_source)
        variant = await service.get_variant("pricing_v2", user_id)
    """
    return ExperimentService(
        config_source,
        documents or build_document_store(),
        analytics or build_analytics_sink(),
        **kwargs,
    )


__all__ = [
    "ExperimentService", "PricingConfig", "build_experiment_service",
    "USAGE_LIMITS_EXPERIMENT",
]

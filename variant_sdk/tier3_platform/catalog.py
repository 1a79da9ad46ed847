"""
variant_sdk.tier3_platform.catalog
─────────────────────────────────────
Experiment catalog loading.

Primary source: one remote-config key whose value is a JSON array of
experiments. The key/value channel has push latency and a size ceiling, so
when the key is absent, empty or undecodable the loader falls back to a full
scan of the experiments collection in the document store, which is the
system of record. If fetching the snapshot fails outright, the fetcher's
last known-good snapshot is tried before the scan.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import TypeAdapter, ValidationError as PydanticValidationError

from variant_sdk.tier0_core import metrics
from variant_sdk.tier0_core.config import EngineSettings, get_settings
from variant_sdk.tier0_core.errors import CatalogDecodeError, CatalogError, ConfigError
from variant_sdk.tier0_core.logging import get_logger
from variant_sdk.tier1_runtime.clock import Clock
from variant_sdk.tier2_reliability.documents import DocumentStore
from variant_sdk.tier2_reliability.fallback import call_with_secondary
from variant_sdk.tier3_platform.experiments import Experiment
from variant_sdk.tier3_platform.remote_config import ConfigFetcher, ConfigSnapshot

logger = get_logger(__name__)

_EXPERIMENT_LIST = TypeAdapter(list[Experiment])

SOURCE_REMOTE_CONFIG = "remote_config"
SOURCE_DOCUMENTS = "documents"


@dataclass(frozen=True)
class Catalog:
    """Experiments known at ``loaded_at``, keyed by id (first occurrence wins)."""

    experiments: list[Experiment]
    source: str
    loaded_at: datetime
    _by_id: dict[str, Experiment] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_id: dict[str, Experiment] = {}
        for experiment in self.experiments:
            by_id.setdefault(experiment.id, experiment)
        object.__setattr__(self, "_by_id", by_id)

    def get(self, experiment_id: str) -> Experiment | None:
        return self._by_id.get(experiment_id)

    def __len__(self) -> int:
        return len(self.experiments)


def decode_catalog(raw: Any) -> list[Experiment]:
    """
    Decode the catalog key's value (JSON text, bytes, or an already-parsed
    list). Raises CatalogDecodeError when the value is absent, blank or
    malformed.
    """
    if raw is None:
        raise CatalogDecodeError("catalog key is absent")
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise CatalogDecodeError("catalog payload is not valid UTF-8") from exc
    try:
        if isinstance(raw, str):
            if not raw.strip():
                raise CatalogDecodeError("catalog key is empty")
            return _EXPERIMENT_LIST.validate_json(raw)
        return _EXPERIMENT_LIST.validate_python(raw)
    except PydanticValidationError as exc:
        raise CatalogDecodeError(
            f"catalog payload is malformed: {exc.error_count()} error(s)",
            first_error=exc.errors()[0]["msg"] if exc.errors() else "",
        ) from exc


class ExperimentCatalogLoader:
    """Resolve the experiment catalog from the snapshot, else the document store."""

    def __init__(
        self,
        fetcher: ConfigFetcher,
        documents: DocumentStore,
        *,
        settings: EngineSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        s = settings or get_settings()
        self._fetcher = fetcher
        self._documents = documents
        self._clock = clock or Clock()
        self.catalog_key = s.catalog_key
        self.collection = s.experiments_collection

    async def load_catalog(self) -> Catalog:
        """
        Raises CatalogError (with the document-store failure as ``__cause__``)
        only when both sources fail. An empty collection is a valid, empty
        catalog: no experiments are running.
        """
        try:
            experiments, degraded = await call_with_secondary(
                self._from_snapshot, self._from_documents, operation="catalog.load"
            )
        except Exception as exc:
            primary = exc.__context__
            metrics.catalog_load_total(source="failed").inc()
            logger.error(
                "catalog.load_failed",
                primary_error=str(primary) if primary else None,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise CatalogError(
                "experiment catalog unavailable from every source",
                primary_error=str(primary) if primary else None,
                secondary_error=str(exc),
            ) from exc

        source = SOURCE_DOCUMENTS if degraded else SOURCE_REMOTE_CONFIG
        metrics.catalog_load_total(source=source).inc()
        logger.info("catalog.loaded", source=source, experiments=len(experiments))
        return Catalog(experiments=experiments, source=source, loaded_at=self._clock.now())

    async def _snapshot(self) -> ConfigSnapshot:
        try:
            return await self._fetcher.fetch_and_activate()
        except ConfigError as exc:
            last_good = self._fetcher.snapshot
            if last_good is None:
                raise
            logger.warning("catalog.using_last_good_snapshot", error_code=exc.code)
            return last_good

    async def _from_snapshot(self) -> list[Experiment]:
        snapshot = await self._snapshot()
        experiments = decode_catalog(snapshot.get(self.catalog_key))
        if not experiments:
            raise CatalogDecodeError("catalog key holds an empty list")
        return experiments

    async def _from_documents(self) -> list[Experiment]:
        documents = await self._documents.list_documents(self.collection)
        experiments: list[Experiment] = []
        for document in documents:
            try:
                experiments.append(Experiment.model_validate(document))
            except PydanticValidationError as exc:
                logger.warning(
                    "catalog.document_skipped",
                    doc_id=document.get("id"),
                    errors=exc.error_count(),
                )
        return experiments


__all__ = ["Catalog", "ExperimentCatalogLoader", "decode_catalog"]

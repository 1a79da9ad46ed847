"""
variant_sdk
───────────
Experiment assignment and resilient remote-configuration engine.
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from variant_sdk.tier0_core.logging import get_logger
from variant_sdk.tier0_core.errors import (
    EngineError,
    ConfigError,
    ConfigFetchFailedError,
    ConfigActivationFailedError,
    ConfigMaxRetriesExceededError,
    ConfigValidationError,
    ConfigNotInitializedError,
    CatalogError,
    CatalogDecodeError,
    ConflictError,
    StoreError,
    AssignmentExistsError,
    ExperimentError,
    ExperimentNotFoundError,
    UnknownVariantError,
)
from variant_sdk.tier0_core.config import get_settings, EngineSettings
from variant_sdk.tier0_core.values import ConfigValue, config_value_from_json

from variant_sdk.tier1_runtime.clock import Clock, ManualClock
from variant_sdk.tier1_runtime.validate import RequiredRemoteConfig, REMOTE_CONFIG_DEFAULTS

from variant_sdk.tier2_reliability.documents import (
    DocumentStore,
    InMemoryDocumentStore,
    LocalDocumentStore,
)

from variant_sdk.tier3_platform.remote_config import (
    ConfigFetcher,
    ConfigSnapshot,
    FetchStatus,
    KeyValueConfigSource,
    MockConfigSource,
)
from variant_sdk.tier3_platform.experiments import (
    Experiment,
    ExperimentStatus,
    Variant,
    VariantAssigner,
    RandomSource,
)
from variant_sdk.tier3_platform.catalog import Catalog, ExperimentCatalogLoader
from variant_sdk.tier3_platform.assignments import AssignmentStore, UserExperimentAssignment
from variant_sdk.tier3_platform.analytics import (
    AnalyticsSink,
    LoggingAnalyticsSink,
    MockAnalyticsSink,
)
from variant_sdk.tier3_platform.experiment_service import (
    ExperimentService,
    PricingConfig,
    build_experiment_service,
)

__version__ = "0.1.0"
__all__ = [
    # logging
    "get_logger",
    # errors
    "EngineError", "ConfigError", "ConfigFetchFailedError", "ConfigActivationFailedError",
    "ConfigMaxRetriesExceededError", "ConfigValidationError", "ConfigNotInitializedError",
    "CatalogError", "CatalogDecodeError", "ConflictError", "StoreError",
    "AssignmentExistsError", "ExperimentError", "ExperimentNotFoundError",
    "UnknownVariantError",
    # config
    "get_settings", "EngineSettings",
    # values
    "ConfigValue", "config_value_from_json",
    # clock
    "Clock", "ManualClock",
    # validate
    "RequiredRemoteConfig", "REMOTE_CONFIG_DEFAULTS",
    # documents
    "DocumentStore", "InMemoryDocumentStore", "LocalDocumentStore",
    # remote config
    "ConfigFetcher", "ConfigSnapshot", "FetchStatus", "KeyValueConfigSource",
    "MockConfigSource",
    # experiments
    "Experiment", "ExperimentStatus", "Variant", "VariantAssigner", "RandomSource",
    # catalog
    "Catalog", "ExperimentCatalogLoader",
    # assignments
    "AssignmentStore", "UserExperimentAssignment",
    # analytics
    "AnalyticsSink", "LoggingAnalyticsSink", "MockAnalyticsSink",
    # service
    "ExperimentService", "PricingConfig", "build_experiment_service",
]

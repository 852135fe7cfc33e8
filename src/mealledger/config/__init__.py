"""Application configuration helpers."""

from __future__ import annotations

from .env import optional_env_var, require_env_var, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .events import EventConfig, event_config_from_mapping, load_event_config
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy
from .ledger import LedgerConfig, get_ledger_config
from .logging import configure_logging
from .record_store import (
    CollectionNames,
    RecordStoreConfig,
    airtable_resilience,
    get_collection_names,
    get_record_store_config,
)

__all__ = [
    "CacheConfig",
    "CollectionNames",
    "ConfigurationError",
    "EventConfig",
    "LedgerConfig",
    "MissingConfigurationError",
    "RateLimit",
    "RecordStoreConfig",
    "ResilienceConfig",
    "RetryPolicy",
    "airtable_resilience",
    "configure_logging",
    "event_config_from_mapping",
    "get_collection_names",
    "get_ledger_config",
    "get_record_store_config",
    "load_event_config",
    "optional_env_var",
    "require_env_var",
    "require_env_vars",
]

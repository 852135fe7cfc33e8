"""Airtable record store configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_var, require_env_vars
from .http_resilience import CacheConfig, RateLimit, ResilienceConfig, RetryPolicy

AIRTABLE_API_BASE = "https://api.airtable.com/v0"
AIRTABLE_TIMEOUT_SECONDS = 15.0
AIRTABLE_DEADLINE_SECONDS = 120.0
AIRTABLE_PAGE_SIZE = 100


@dataclass(frozen=True, slots=True)
class RecordStoreConfig:
    """Holds Airtable credentials plus the HTTP resilience settings."""

    api_key: str
    base_id: str
    resilience: ResilienceConfig
    page_size: int = AIRTABLE_PAGE_SIZE


def airtable_resilience(
    *,
    base_id: str,
    api_key: str,
    cache_reads: bool = False,
    retry: RetryPolicy | None = None,
) -> ResilienceConfig:
    # Airtable allows five requests per second per base
    return ResilienceConfig(
        name="airtable",
        base_url=f"{AIRTABLE_API_BASE}/{base_id}/",
        timeout_seconds=AIRTABLE_TIMEOUT_SECONDS,
        deadline_seconds=AIRTABLE_DEADLINE_SECONDS,
        retry=retry or RetryPolicy(),
        ratelimit=RateLimit(max_calls=5, per_seconds=1.0),
        cache=CacheConfig() if cache_reads else None,
        default_headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
    )


def get_record_store_config(*, cache_reads: bool = False) -> RecordStoreConfig:
    values = require_env_vars(("AIRTABLE_API_KEY", "AIRTABLE_BASE_ID"))
    api_key = values["AIRTABLE_API_KEY"]
    base_id = values["AIRTABLE_BASE_ID"]
    return RecordStoreConfig(
        api_key=api_key,
        base_id=base_id,
        resilience=airtable_resilience(base_id=base_id, api_key=api_key, cache_reads=cache_reads),
    )


@dataclass(frozen=True, slots=True)
class CollectionNames:
    """Table identifiers for the meal program collections."""

    lunch_cards: str
    lunch_reservations: str


DEFAULT_LUNCH_CARDS_TABLE = "Lunch Cards"
DEFAULT_LUNCH_RESERVATIONS_TABLE = "Lunch Reservations"


def get_collection_names() -> CollectionNames:
    return CollectionNames(
        lunch_cards=optional_env_var("AIRTABLE_LUNCH_CARDS_TABLE_ID", DEFAULT_LUNCH_CARDS_TABLE)
        or DEFAULT_LUNCH_CARDS_TABLE,
        lunch_reservations=optional_env_var(
            "AIRTABLE_LUNCH_RESERVATIONS_TABLE_ID", DEFAULT_LUNCH_RESERVATIONS_TABLE
        )
        or DEFAULT_LUNCH_RESERVATIONS_TABLE,
    )

"""Retry, rate-limit and cache settings for the record store HTTP client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Bounded exponential backoff for transient store failures.

    POST is retried too, so a create that timed out after reaching the store can
    leave a second record behind; the duplicate detector finds those.
    """

    total: int = 4
    backoff_factor: float = 0.5
    max_backoff_wait: float = 30.0
    backoff_jitter: float = 1.0
    respect_retry_after_header: bool = True
    retry_methods: frozenset[str] = frozenset({"DELETE", "GET", "PATCH", "POST"})
    retry_statuses: frozenset[int] = frozenset({429, 500, 502, 503, 504})


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class CacheConfig:
    """Response cache for read-only runs; ``sqlite_path=None`` keeps it in memory."""

    sqlite_path: str | None = None
    ttl_seconds: float | None = 300.0


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    # wall-clock budget for one gateway operation, retries and pagination included
    deadline_seconds: float | None = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    ratelimit: RateLimit | None = None
    cache: CacheConfig | None = None
    default_headers: Mapping[str, str] | None = None

"""Async HTTP client used by the record store adapters.

A request passes the rate limiter first, then the optional read cache, then the
retry transport that talks to the network.
"""

from __future__ import annotations

import sqlite3
from logging import getLogger
from typing import (
    TYPE_CHECKING,
    TypedDict,
    Unpack,
)

import anysqlite
import httpx
from aiolimiter import AsyncLimiter
from hishel import AsyncSqliteStorage, BaseFilter, FilterPolicy, Request, Response
from hishel.httpx import AsyncCacheTransport
from httpx_retries import Retry, RetryTransport

if TYPE_CHECKING:
    from types import TracebackType

    from httpx._types import HeaderTypes, QueryParamTypes, TimeoutTypes, URLTypes

    from mealledger.config.http_resilience import CacheConfig, ResilienceConfig, RetryPolicy

log = getLogger(__name__)

RETRY_EXCEPTIONS: tuple[type[httpx.HTTPError], ...] = (
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


class RequestOptions(TypedDict, total=False):
    params: QueryParamTypes | None
    json: object
    headers: HeaderTypes | None


class AsyncClientOptions(TypedDict, total=False):
    base_url: str
    timeout: TimeoutTypes
    headers: HeaderTypes
    transport: httpx.AsyncBaseTransport


class _ReadRequestFilter(BaseFilter[Request]):
    def needs_body(self) -> bool:
        return False

    def apply(self, item: Request, body: bytes | None) -> bool:
        return item.method.upper() == "GET"


class _SuccessResponseFilter(BaseFilter[Response]):
    def needs_body(self) -> bool:
        return False

    def apply(self, item: Response, body: bytes | None) -> bool:
        return 200 <= item.status_code < 300


def build_retry(policy: RetryPolicy) -> Retry:
    return Retry(
        total=policy.total,
        backoff_factor=policy.backoff_factor,
        max_backoff_wait=policy.max_backoff_wait,
        backoff_jitter=policy.backoff_jitter,
        respect_retry_after_header=policy.respect_retry_after_header,
        allowed_methods=tuple(sorted(policy.retry_methods)),
        status_forcelist=tuple(sorted(policy.retry_statuses)),
        retry_on_exceptions=RETRY_EXCEPTIONS,
    )


class ResilientClient:
    """Rate-limited, retrying httpx client with an optional response cache.

    The cache keeps successful GET responses for ``ttl_seconds`` whatever their
    caching headers say, and does not notice writes; enable it for read-only runs.
    ``transport`` replaces the network layer underneath the retry transport;
    tests pass an ``httpx.MockTransport`` here.
    """

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self._limiter: AsyncLimiter | None = (
            AsyncLimiter(config.ratelimit.max_calls, config.ratelimit.per_seconds)
            if config.ratelimit
            else None
        )

        network: httpx.AsyncBaseTransport = RetryTransport(
            transport=transport, retry=build_retry(config.retry)
        )
        if config.cache is not None:
            network = AsyncCacheTransport(
                next_transport=network,
                storage=_cache_storage(config.cache),
                policy=FilterPolicy(
                    request_filters=[_ReadRequestFilter()],
                    response_filters=[_SuccessResponseFilter()],
                ),
            )

        options: AsyncClientOptions = {"timeout": config.timeout_seconds, "transport": network}
        if config.base_url is not None:
            options["base_url"] = config.base_url
        if config.default_headers:
            options["headers"] = dict(config.default_headers)

        self._client = httpx.AsyncClient(**options)

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    @property
    def is_closed(self) -> bool:
        return self._client.is_closed

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: URLTypes,
        **kwargs: Unpack[RequestOptions],
    ) -> httpx.Response:
        if self._limiter is None:
            response = await self._client.request(method, url, **kwargs)
        else:
            async with self._limiter:
                response = await self._client.request(method, url, **kwargs)
        log.debug("%s %s %s -> %s", self.config.name, method, url, response.status_code)
        return response


def _cache_storage(config: CacheConfig) -> AsyncSqliteStorage:
    if config.sqlite_path is not None:
        return AsyncSqliteStorage(database_path=config.sqlite_path, default_ttl=config.ttl_seconds)
    # a bare database_path lands in a file under .cache/hishel
    memory = anysqlite.Connection(sqlite3.connect(":memory:", check_same_thread=False))
    return AsyncSqliteStorage(connection=memory, default_ttl=config.ttl_seconds)

"""Record store gateway backed by the Airtable REST API."""

from __future__ import annotations

import asyncio
import threading
from logging import getLogger
from typing import TYPE_CHECKING
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from mealledger.adapters.http_resilience import ResilientClient
from mealledger.domain.errors import (
    GatewayUnavailableError,
    RecordNotFoundError,
    RecordStoreError,
)
from mealledger.domain.model import StoredRecord

from .schema import (
    DeletedRecordPayload,
    ErrorPayload,
    ListRecordsPayload,
    RecordPayload,
    WriteRecordPayload,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Coroutine, Mapping
    from types import TracebackType

    from pydantic import BaseModel

    from mealledger.config.http_resilience import ResilienceConfig
    from mealledger.config.record_store import RecordStoreConfig

log = getLogger(__name__)

_TRANSIENT_STATUS = frozenset({429, 500, 502, 503, 504})


class AirtableGateway:
    """Synchronous gateway over one long-lived async client.

    Calls are serialized on a private event loop, so the rate limit and the read
    cache apply across operations. Close the gateway, or use it as a context
    manager, to release the client and the cache.
    """

    def __init__(
        self,
        *,
        config: RecordStoreConfig,
        client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
    ) -> None:
        self._config = config
        self._resilience = config.resilience
        self._client_factory = client_factory or ResilientClient
        self._runner: asyncio.Runner | None = None
        self._client: ResilientClient | None = None
        self._lock = threading.Lock()

    def __enter__(self) -> AirtableGateway:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    def close(self) -> None:
        with self._lock:
            if self._runner is None:
                return
            try:
                if self._client is not None:
                    self._runner.run(self._client.aclose())
            finally:
                self._client = None
                self._runner.close()
                self._runner = None

    def list_all(self, collection: str) -> list[StoredRecord]:
        return self._run(self._list_all_async(collection), f"list {collection}")

    def get(self, collection: str, record_id: str) -> StoredRecord:
        return self._run(self._get_async(collection, record_id), f"get {record_id}")

    def create(self, collection: str, fields: Mapping[str, object]) -> StoredRecord:
        return self._run(self._create_async(collection, fields), f"create in {collection}")

    def update(
        self,
        collection: str,
        record_id: str,
        fields: Mapping[str, object],
    ) -> StoredRecord:
        return self._run(self._update_async(collection, record_id, fields), f"update {record_id}")

    def delete(self, collection: str, record_id: str) -> None:
        self._run(self._delete_async(collection, record_id), f"delete {record_id}")

    def _run[T](self, operation: Coroutine[object, object, T], description: str) -> T:
        with self._lock:
            if self._runner is None:
                self._runner = asyncio.Runner()
            return self._runner.run(self._with_deadline(operation, description))

    def _http(self) -> ResilientClient:
        if self._client is None:
            self._client = self._client_factory(self._resilience)
        return self._client

    async def _with_deadline[T](
        self,
        operation: Coroutine[object, object, T],
        description: str,
    ) -> T:
        deadline = self._resilience.deadline_seconds
        if deadline is None:
            return await operation
        try:
            async with asyncio.timeout(deadline):
                return await operation
        except TimeoutError:
            raise GatewayUnavailableError(
                f"Airtable did not finish '{description}' within {deadline:.0f}s"
            ) from None

    async def _list_all_async(self, collection: str) -> list[StoredRecord]:
        records: list[StoredRecord] = []
        offset: str | None = None
        client = self._http()
        while True:
            params: dict[str, str | int] = {"pageSize": self._config.page_size}
            if offset is not None:
                params["offset"] = offset
            response = await self._request(
                client,
                "GET",
                _table_path(collection),
                collection=collection,
                params=params,
            )
            page = _validate(ListRecordsPayload, response)
            records.extend(_to_record(payload) for payload in page.records)
            if not page.offset:
                break
            offset = page.offset
        log.debug("Fetched %s records from %s", len(records), collection)
        return records

    async def _get_async(self, collection: str, record_id: str) -> StoredRecord:
        client = self._http()
        response = await self._request(
            client,
            "GET",
            _record_path(collection, record_id),
            collection=collection,
            record_id=record_id,
        )
        return _to_record(_validate(RecordPayload, response))

    async def _create_async(
        self,
        collection: str,
        fields: Mapping[str, object],
    ) -> StoredRecord:
        body = WriteRecordPayload(fields=dict(fields)).model_dump(mode="json")
        client = self._http()
        response = await self._request(
            client,
            "POST",
            _table_path(collection),
            collection=collection,
            json=body,
        )
        return _to_record(_validate(RecordPayload, response))

    async def _update_async(
        self,
        collection: str,
        record_id: str,
        fields: Mapping[str, object],
    ) -> StoredRecord:
        body = WriteRecordPayload(fields=dict(fields)).model_dump(mode="json")
        client = self._http()
        response = await self._request(
            client,
            "PATCH",
            _record_path(collection, record_id),
            collection=collection,
            record_id=record_id,
            json=body,
        )
        return _to_record(_validate(RecordPayload, response))

    async def _delete_async(self, collection: str, record_id: str) -> None:
        client = self._http()
        response = await self._request(
            client,
            "DELETE",
            _record_path(collection, record_id),
            collection=collection,
            record_id=record_id,
        )
        deleted = _validate(DeletedRecordPayload, response)
        if not deleted.deleted:
            raise RecordStoreError(f"Airtable did not delete {record_id} from {collection}")

    async def _request(
        self,
        client: ResilientClient,
        method: str,
        path: str,
        *,
        collection: str,
        record_id: str | None = None,
        params: Mapping[str, str | int] | None = None,
        json: object = None,
    ) -> httpx.Response:
        try:
            if json is None:
                response = await client.request(method, path, params=params)
            else:
                response = await client.request(method, path, params=params, json=json)
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            log.error("Airtable %s %s failed after retries: %s", method, path, exc)
            raise GatewayUnavailableError(f"Airtable {method} {path} failed: {exc}") from exc
        _raise_for_status(response, collection=collection, record_id=record_id)
        return response


def _raise_for_status(
    response: httpx.Response,
    *,
    collection: str,
    record_id: str | None,
) -> None:
    if response.is_success:
        return
    status = response.status_code
    if status == 404 and record_id is not None:
        raise RecordNotFoundError(collection, record_id)
    if status in _TRANSIENT_STATUS:
        log.error("Airtable still answered %s after retries", status)
        raise GatewayUnavailableError(
            f"Airtable unavailable (HTTP {status}) for {collection}",
            status_code=status,
        )
    try:
        error = ErrorPayload.model_validate(response.json())
    except (ValueError, ValidationError):
        error = ErrorPayload(type="HTTP_ERROR", message=response.text)
    log.error("Airtable error %s on %s: %s", error.type, collection, error.message)
    raise RecordStoreError(
        f"Airtable {error.type}: {error.message}",
        status_code=status,
        error_type=error.type,
    )


def _validate[M: BaseModel](model: type[M], response: httpx.Response) -> M:
    try:
        return model.model_validate(response.json())
    except (ValueError, ValidationError) as exc:
        raise RecordStoreError(f"Unexpected Airtable response: {exc}") from exc


def _to_record(payload: RecordPayload) -> StoredRecord:
    return StoredRecord(id=payload.id, created_at=payload.created_time, fields=payload.fields)


def _table_path(collection: str) -> str:
    return quote(collection, safe="")


def _record_path(collection: str, record_id: str) -> str:
    return f"{_table_path(collection)}/{quote(record_id, safe='')}"


from __future__ import annotations

import dataclasses
import json
import time
from collections.abc import Callable, Iterator  # noqa: TC003
from datetime import UTC, datetime

import httpx
import pytest

from mealledger.adapters.airtable import AirtableGateway
from mealledger.adapters.http_resilience import ResilientClient
from mealledger.config import (
    RateLimit,
    RecordStoreConfig,
    ResilienceConfig,
    RetryPolicy,
    airtable_resilience,
)
from mealledger.domain.errors import GatewayUnavailableError, RecordNotFoundError, RecordStoreError
from mealledger.domain.ports import RecordStoreGateway

TABLE = "tblCards"
CREATED = "2025-03-01T10:00:00.000Z"

_opened: list[AirtableGateway] = []


@pytest.fixture(autouse=True)
def _close_gateways() -> Iterator[None]:
    yield
    while _opened:
        _opened.pop().close()


def _make_client_factory(
    handler: Callable[[httpx.Request], httpx.Response],
    clients: list[ResilientClient] | None = None,
) -> Callable[[ResilienceConfig], ResilientClient]:
    def factory(resilience: ResilienceConfig) -> ResilientClient:
        client = ResilientClient(resilience, transport=httpx.MockTransport(handler))
        if clients is not None:
            clients.append(client)
        return client

    return factory


def _gateway(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    page_size: int = 100,
    ratelimit: RateLimit | None = None,
    cache_reads: bool = False,
    clients: list[ResilientClient] | None = None,
) -> AirtableGateway:
    resilience = airtable_resilience(
        base_id="appBase",
        api_key="patSecret",
        cache_reads=cache_reads,
        retry=RetryPolicy(total=2, backoff_factor=0.0, backoff_jitter=0.0),
    )
    if ratelimit is not None:
        resilience = dataclasses.replace(resilience, ratelimit=ratelimit)
    config = RecordStoreConfig(
        api_key="patSecret",
        base_id="appBase",
        resilience=resilience,
        page_size=page_size,
    )
    gateway = AirtableGateway(config=config, client_factory=_make_client_factory(handler, clients))
    _opened.append(gateway)
    return gateway


def _record(record_id: str, **fields: object) -> dict[str, object]:
    return {"id": record_id, "createdTime": CREATED, "fields": fields}


def test_gateway_satisfies_the_port() -> None:
    assert isinstance(_gateway(lambda _request: httpx.Response(200)), RecordStoreGateway)


def test_list_all_follows_offsets() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "offset" not in request.url.params:
            return httpx.Response(
                200,
                json={"records": [_record("rec1", Name="Ann Lee")], "offset": "itrPage2"},
            )
        return httpx.Response(200, json={"records": [_record("rec2", Name="Bob Stone")]})

    records = _gateway(handler, page_size=1).list_all(TABLE)

    assert [record.id for record in records] == ["rec1", "rec2"]
    assert records[0].fields == {"Name": "Ann Lee"}
    assert records[0].created_at == datetime(2025, 3, 1, 10, 0, tzinfo=UTC)
    assert requests[0].url.path == f"/v0/appBase/{TABLE}"
    assert requests[0].url.params["pageSize"] == "1"
    assert requests[1].url.params["offset"] == "itrPage2"
    assert requests[0].headers["Authorization"] == "Bearer patSecret"


def test_create_posts_fields() -> None:
    bodies: list[dict[str, object]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "POST"
        body = json.loads(request.content)
        bodies.append(body)
        return httpx.Response(200, json=_record("recNew", **body["fields"]))

    record = _gateway(handler).create(TABLE, {"Name": "Ann Lee", "Remaining Meals": 10})

    assert record.id == "recNew"
    assert record.fields["Remaining Meals"] == 10
    assert bodies == [{"fields": {"Name": "Ann Lee", "Remaining Meals": 10}, "typecast": False}]


def test_update_patches_a_single_record() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "PATCH"
        assert request.url.path == f"/v0/appBase/{TABLE}/recCard"
        return httpx.Response(200, json=_record("recCard", **{"Remaining Meals": 7}))

    record = _gateway(handler).update(TABLE, "recCard", {"Remaining Meals": 7})

    assert record.fields == {"Remaining Meals": 7}


def test_delete_confirms_the_deletion() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.method == "DELETE"
        return httpx.Response(200, json={"id": "recDup", "deleted": True})

    _gateway(handler).delete(TABLE, "recDup")


def test_unconfirmed_delete_is_an_error() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"id": "recDup", "deleted": False})

    with pytest.raises(RecordStoreError, match="did not delete"):
        _gateway(handler).delete(TABLE, "recDup")


def test_missing_record_raises_not_found() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": "NOT_FOUND"})

    with pytest.raises(RecordNotFoundError) as exc:
        _gateway(handler).get(TABLE, "recMissing")

    assert exc.value.record_id == "recMissing"


def test_rate_limit_is_retried_then_reported() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(429, json={"errors": [{"error": {"code": "RATE_LIMIT_REACHED"}}]})

    with pytest.raises(GatewayUnavailableError) as exc:
        _gateway(handler).list_all(TABLE)

    assert exc.value.status_code == 429
    assert len(calls) > 1


def test_transient_error_recovers_on_retry() -> None:
    statuses = iter([503, 200])

    def handler(_request: httpx.Request) -> httpx.Response:
        status = next(statuses)
        if status != 200:
            return httpx.Response(status)
        return httpx.Response(200, json=_record("recCard", Name="Ann Lee"))

    record = _gateway(handler).get(TABLE, "recCard")

    assert record.id == "recCard"


def test_validation_error_carries_the_airtable_type() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            422,
            json={"error": {"type": "UNKNOWN_FIELD_NAME", "message": 'Unknown field name: "Nmae"'}},
        )

    with pytest.raises(RecordStoreError) as exc:
        _gateway(handler).create(TABLE, {"Nmae": "Ann"})

    assert exc.value.status_code == 422
    assert exc.value.error_type == "UNKNOWN_FIELD_NAME"
    assert not isinstance(exc.value, RecordNotFoundError)


def test_network_failure_becomes_gateway_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GatewayUnavailableError):
        _gateway(handler).list_all(TABLE)


def test_malformed_payload_is_a_store_error() -> None:
    def handler(_request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"unexpected": True})

    with pytest.raises(RecordStoreError, match="Unexpected Airtable response"):
        _gateway(handler).get(TABLE, "recCard")


def test_sequential_operations_share_one_rate_limited_client() -> None:
    clients: list[ResilientClient] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=_record("recNew", **json.loads(request.content)["fields"]))

    gateway = _gateway(
        handler,
        ratelimit=RateLimit(max_calls=2, per_seconds=0.2),
        clients=clients,
    )

    start = time.monotonic()
    for number in range(6):
        gateway.create(TABLE, {"Name": f"Guest {number}"})
    elapsed = time.monotonic() - start

    # two calls pass at once, the other four wait 0.1s each
    assert elapsed >= 0.3
    assert len(clients) == 1


def test_airtable_rate_limit_is_five_requests_per_second() -> None:
    resilience = airtable_resilience(base_id="appBase", api_key="patSecret")

    assert resilience.ratelimit == RateLimit(max_calls=5, per_seconds=1.0)


def test_cached_reads_reach_airtable_once() -> None:
    methods: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        methods.append(request.method)
        if request.method == "GET":
            return httpx.Response(
                200,
                json={"records": [_record("rec1", Name="Ann Lee")]},
                headers={"Cache-Control": "public, max-age=300"},
            )
        return httpx.Response(200, json=_record("recNew", Name="Bob Stone"))

    gateway = _gateway(handler, cache_reads=True)

    first = gateway.list_all(TABLE)
    second = gateway.list_all(TABLE)
    gateway.create(TABLE, {"Name": "Bob Stone"})
    gateway.create(TABLE, {"Name": "Bob Stone"})

    assert [record.id for record in second] == [record.id for record in first] == ["rec1"]
    assert methods == ["GET", "POST", "POST"]


def test_failed_reads_are_not_cached() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(404, json={"error": "NOT_FOUND"})
        return httpx.Response(200, json=_record("recCard", Name="Ann Lee"))

    gateway = _gateway(handler, cache_reads=True)

    with pytest.raises(RecordNotFoundError):
        gateway.get(TABLE, "recCard")
    record = gateway.get(TABLE, "recCard")

    assert record.fields == {"Name": "Ann Lee"}
    assert len(calls) == 2


def test_closing_the_gateway_closes_its_client() -> None:
    clients: list[ResilientClient] = []
    gateway = _gateway(
        lambda _request: httpx.Response(200, json=_record("recCard")),
        clients=clients,
    )

    with gateway:
        gateway.get(TABLE, "recCard")
        gateway.get(TABLE, "recCard")

    (client,) = clients
    assert client.is_closed
    assert gateway.get(TABLE, "recCard").id == "recCard"
    assert len(clients) == 2

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable

import httpx
import pytest

from conftest import FakeStore
from ingestion.core.errors import ConfigError, FetchError
from ingestion.core.scraper import DelegationScraper
from ingestion.core.tzkt_client import TzktClient, format_watermark


UTC = timezone.utc
BASE_URL = "https://tzkt.test/"

DELEGATIONS_BODY = b"""[
    {"id":42,"timestamp":"2024-06-25T10:02:33Z","block":"hash1","sender":{"address":"addr1"},"level":242,"amount":342},
    {"id":43,"timestamp":"2024-06-25T14:02:33Z","block":"hash2","sender":{"address":"addr2"},"level":243,"amount":343}
]"""


def _call(handler: Callable[[httpx.Request], httpx.Response], method: str, *args):
    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = TzktClient(BASE_URL, client=http)
            return await getattr(client, method)(*args)

    return asyncio.run(scenario())


def test_calls_current_protocol_endpoint():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/protocols/current"
        return httpx.Response(200, json={"constants": {"timeBetweenBlocks": 10, "blocksPerCycle": 24576}})

    assert _call(handler, "poll_interval") == timedelta(seconds=10)


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(429),
        httpx.Response(200, content=b"NOT JSON"),
        httpx.Response(200, json={"constants": {}}),
        httpx.Response(200, json={"constants": {"timeBetweenBlocks": 0}}),
    ],
    ids=["bad-status", "not-json", "missing-constant", "zero-interval"],
)
def test_poll_interval_errors(response: httpx.Response):
    with pytest.raises(FetchError):
        _call(lambda request: response, "poll_interval")


def test_calls_delegations_endpoint():
    since = datetime(1991, 3, 1, 10, 25, 7, tzinfo=UTC)

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/operations/delegations"
        params = request.url.params
        assert len(params) == 4
        assert params["select"] == "id,sender,amount,level,timestamp,block"
        assert params["sort.asc"] == "id"
        assert params["timestamp.ge"] == "1991-03-01T10:25:07Z"
        assert params["limit"] == "1000"
        return httpx.Response(200, content=DELEGATIONS_BODY)

    got = _call(handler, "delegations_since", since)

    assert [d.id for d in got] == [42, 43]
    assert got[0].timestamp == datetime(2024, 6, 25, 10, 2, 33, tzinfo=UTC)
    assert got[0].block == "hash1"
    assert got[0].sender.address == "addr1"
    assert got[0].level == 242
    assert got[0].amount == 342


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500),
        httpx.Response(200, content=b"NOT JSON"),
        httpx.Response(200, json={"id": 42}),
        httpx.Response(200, json=[{"id": 42}]),
    ],
    ids=["bad-status", "not-json", "not-a-list", "missing-fields"],
)
def test_delegations_errors(response: httpx.Response):
    with pytest.raises(FetchError):
        _call(lambda request: response, "delegations_since", datetime(2024, 1, 1, tzinfo=UTC))


def test_transport_error_is_fetch_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(FetchError):
        _call(handler, "delegations_since", datetime(2024, 1, 1, tzinfo=UTC))


def test_empty_result():
    assert _call(lambda request: httpx.Response(200, json=[]), "delegations_since", datetime(2024, 1, 1, tzinfo=UTC)) == []


def test_watermark_is_utc_second_precision():
    cet = timezone(timedelta(hours=1))
    assert format_watermark(datetime(2024, 6, 25, 11, 2, 33, 987654, tzinfo=cet)) == "2024-06-25T10:02:33Z"


@pytest.mark.parametrize("base_url", ["", "tzkt.test", "ftp://tzkt.test/"])
def test_rejects_invalid_base_url(base_url: str):
    with pytest.raises(ConfigError):
        TzktClient(base_url)


def test_adds_missing_trailing_slash():
    client = TzktClient("https://tzkt.test", client=httpx.AsyncClient())
    assert client.protocol_url == "https://tzkt.test/v1/protocols/current"
    assert client.delegations_url == "https://tzkt.test/v1/operations/delegations"


def _paged_handler(delegations: list[dict], requests: list[httpx.QueryParams]) -> Callable[[httpx.Request], httpx.Response]:
    """Serve `delegations` the way TzKT does: `id.gt` cursor, `limit` defaulting to 100."""

    def handler(request: httpx.Request) -> httpx.Response:
        params = request.url.params
        requests.append(params)
        after = int(params.get("id.gt", -1))
        limit = int(params.get("limit", 100))
        page = [d for d in delegations if d["id"] > after][:limit]
        return httpx.Response(200, json=page)

    return handler


def _same_second(count: int, ts: str = "2024-06-25T14:02:33Z") -> list[dict]:
    return [
        {"id": 1000 + i, "timestamp": ts, "block": "hash", "sender": {"address": f"tz1{i}"}, "level": 7, "amount": i}
        for i in range(count)
    ]


def test_delegations_are_paged_by_id_until_short_page():
    requests: list[httpx.QueryParams] = []
    handler = _paged_handler(_same_second(250), requests)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = TzktClient(BASE_URL, client=http, page_size=100)
            return await client.delegations_since(datetime(2024, 6, 25, 14, 2, 33, tzinfo=UTC))

    got = asyncio.run(scenario())

    assert [d.id for d in got] == list(range(1000, 1250))
    assert [p.get("id.gt") for p in requests] == [None, "1099", "1199"]
    assert all(p["timestamp.ge"] == "2024-06-25T14:02:33Z" and p["limit"] == "100" for p in requests)


def test_full_last_page_costs_one_empty_request():
    requests: list[httpx.QueryParams] = []
    handler = _paged_handler(_same_second(200), requests)

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = TzktClient(BASE_URL, client=http, page_size=100)
            return await client.delegations_since(datetime(2024, 6, 25, tzinfo=UTC))

    assert len(asyncio.run(scenario())) == 200
    assert [p.get("id.gt") for p in requests] == [None, "1099", "1199"]


def test_failure_on_a_later_page_fails_the_whole_fetch():
    def handler(request: httpx.Request) -> httpx.Response:
        if "id.gt" in request.url.params:
            return httpx.Response(503)
        return httpx.Response(200, json=_same_second(100))

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            client = TzktClient(BASE_URL, client=http, page_size=100)
            return await client.delegations_since(datetime(2024, 6, 25, tzinfo=UTC))

    with pytest.raises(FetchError):
        asyncio.run(scenario())


def test_busy_second_is_stored_completely():
    # More delegations in one second than TzKT returns for an unbounded query.
    requests: list[httpx.QueryParams] = []
    handler = _paged_handler(_same_second(150), requests)
    store = FakeStore()

    async def scenario():
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            scraper = DelegationScraper(TzktClient(BASE_URL, client=http), store)
            cursor = datetime(2024, 6, 25, 14, 2, 33, tzinfo=UTC)
            for _ in range(3):
                cursor = await scraper.scrape_once(cursor)
            return cursor

    assert asyncio.run(scenario()) > datetime(2024, 6, 25, 14, 2, 33, tzinfo=UTC)
    assert len(store.rows) == 150


@pytest.mark.parametrize("page_size", [0, 10001])
def test_rejects_invalid_page_size(page_size: int):
    with pytest.raises(ConfigError):
        TzktClient(BASE_URL, page_size=page_size)

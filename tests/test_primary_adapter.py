import asyncio
from datetime import datetime, timedelta, timezone

import httpx

from price_cache.credentials import InMemoryCredentialStore
from price_cache.exchanges.groww_adapter import GrowwAdapter
from price_cache.schemas.quote import BrokerCredentials, QuoteSource

BASE_URL = "https://broker.test/v1"


def quote_payload(symbol, price=100.0):
    return {"symbol": symbol, "lastPrice": price, "change": 1.234, "changePct": 1.2345, "volume": 500}


def make_adapter(handler, credentials=None):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    store = InMemoryCredentialStore(credentials or [])
    return GrowwAdapter(client, store, base_url=BASE_URL)


def valid_credentials(user_id="u1", **overrides):
    data = {"user_id": user_id, "api_key": "key-1", "access_token": "tok-1"}
    data.update(overrides)
    return BrokerCredentials(**data)


def test_without_user_returns_empty_and_makes_no_calls():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=quote_payload("AAA"))

    result = asyncio.run(make_adapter(handler, [valid_credentials()]).try_resolve(["AAA"]))
    assert result == {}
    assert calls == []


def test_missing_credentials_not_applicable():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=quote_payload("AAA"))

    adapter = make_adapter(handler, [valid_credentials(access_token=None)])
    assert asyncio.run(adapter.try_resolve(["AAA"], user_id="u1")) == {}
    assert asyncio.run(adapter.try_resolve(["AAA"], user_id="unknown")) == {}
    assert calls == []


def test_expired_token_not_applicable():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json=quote_payload("AAA"))

    expired = valid_credentials(token_expiry=datetime.now(timezone.utc) - timedelta(minutes=1))
    result = asyncio.run(make_adapter(handler, [expired]).try_resolve(["AAA"], user_id="u1"))
    assert result == {}
    assert calls == []


def test_fetches_with_auth_headers():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=quote_payload(request.url.params["symbol"], 250.5))

    creds = valid_credentials(token_expiry=datetime.now(timezone.utc) + timedelta(hours=1))
    result = asyncio.run(make_adapter(handler, [creds]).try_resolve(["AAA"], user_id="u1"))

    record = result["AAA"]
    assert record.price == 250.5
    assert record.change == 1.23
    assert record.change_pct == 1.23
    assert record.volume == 500
    assert record.source == QuoteSource.PRIMARY

    request = seen[0]
    assert str(request.url).startswith(f"{BASE_URL}/market/quote")
    assert request.url.params["symbol"] == "AAA"
    assert request.headers["authorization"] == "Bearer tok-1"
    assert request.headers["x-api-key"] == "key-1"


def test_single_symbol_failure_does_not_abort_batch():
    def handler(request):
        symbol = request.url.params["symbol"]
        if symbol == "BAD":
            return httpx.Response(500, text="boom")
        if symbol == "EMPTY":
            return httpx.Response(200, json={"symbol": "EMPTY"})
        return httpx.Response(200, json=quote_payload(symbol))

    result = asyncio.run(
        make_adapter(handler, [valid_credentials()]).try_resolve(["AAA", "BAD", "EMPTY", "CCC"], user_id="u1")
    )
    assert sorted(result) == ["AAA", "CCC"]


def test_each_success_persisted_immediately():
    def handler(request):
        symbol = request.url.params["symbol"]
        if symbol == "BAD":
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json=quote_payload(symbol))

    persisted = []

    async def on_resolved(record):
        persisted.append(record.symbol)
        return record

    asyncio.run(
        make_adapter(handler, [valid_credentials()]).try_resolve(["AAA", "BAD"], user_id="u1", on_resolved=on_resolved)
    )
    assert persisted == ["AAA"]

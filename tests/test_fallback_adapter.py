import asyncio

import httpx

from price_cache.exchanges.yahoo_adapter import YahooAdapter
from price_cache.schemas.quote import QuoteSource
from price_cache.utils.exchange_mapper import Exchange

MIRROR_A = "https://mirror-a.test/v8/finance/chart"
MIRROR_B = "https://mirror-b.test/v8/finance/chart"


def chart(price, prev=None, volume=1000, prev_key="chartPreviousClose"):
    meta = {"regularMarketPrice": price, "regularMarketVolume": volume}
    if prev is not None:
        meta[prev_key] = prev
    return {"chart": {"result": [{"meta": meta}], "error": None}}


def make_adapter(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("mirrors", [MIRROR_A, MIRROR_B])
    kwargs.setdefault("exchange", Exchange.NSE)
    return YahooAdapter(client, **kwargs)


def test_example_scenario_mirror_failover_per_symbol():
    def handler(request):
        host, symbol = request.url.host, request.url.path.rsplit("/", 1)[-1]
        if host == "mirror-a.test" and symbol == "AAA.NS":
            return httpx.Response(200, json=chart(100.0, 95.0))
        if host == "mirror-a.test" and symbol == "BBB.NS":
            raise httpx.ReadTimeout("timed out", request=request)
        if host == "mirror-b.test" and symbol == "BBB.NS":
            return httpx.Response(200, json=chart(50.0, 52.0))
        return httpx.Response(404)

    result = asyncio.run(make_adapter(handler).try_resolve(["AAA", "BBB"]))

    assert result["AAA"].price == 100.0
    assert result["AAA"].change == 5.0
    assert result["AAA"].change_pct == 5.26
    assert result["AAA"].source == QuoteSource.FALLBACK
    assert result["BBB"].price == 50.0
    assert result["BBB"].change == -2.0
    assert result["BBB"].change_pct == -3.85
    assert result["BBB"].source == QuoteSource.FALLBACK


def test_mirrors_tried_in_order_and_stop_on_success():
    calls = []

    def handler(request):
        calls.append(request.url.host)
        if request.url.host == "mirror-a.test":
            return httpx.Response(503, text="unavailable")
        return httpx.Response(200, json=chart(10.0, 8.0))

    record = asyncio.run(make_adapter(handler).fetch_quote("INFY"))
    assert calls == ["mirror-a.test", "mirror-b.test"]
    assert record.price == 10.0
    assert record.source == QuoteSource.FALLBACK


def test_first_mirror_success_skips_the_rest():
    calls = []

    def handler(request):
        calls.append(request.url.host)
        return httpx.Response(200, json=chart(10.0, 10.0))

    asyncio.run(make_adapter(handler).fetch_quote("INFY"))
    assert calls == ["mirror-a.test"]


def test_all_mirrors_failing_leaves_symbol_absent():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    result = asyncio.run(make_adapter(handler).try_resolve(["INFY"]))
    assert result == {}


def test_missing_price_and_malformed_payloads_fall_through():
    def handler(request):
        if request.url.host == "mirror-a.test":
            return httpx.Response(200, json={"chart": {"result": [{"meta": {"previousClose": 9.0}}]}})
        return httpx.Response(200, text="<html>not json</html>")

    result = asyncio.run(make_adapter(handler).try_resolve(["INFY"]))
    assert result == {}


def test_missing_previous_close_gives_zero_change():
    def handler(request):
        return httpx.Response(200, json=chart(42.0))

    record = asyncio.run(make_adapter(handler).fetch_quote("INFY"))
    assert record.change == 0.0
    assert record.change_pct == 0.0


def test_zero_previous_close_guards_division():
    def handler(request):
        return httpx.Response(200, json=chart(42.0, 0))

    record = asyncio.run(make_adapter(handler).fetch_quote("INFY"))
    assert record.change_pct == 0.0


def test_previous_close_used_when_chart_previous_close_absent():
    def handler(request):
        return httpx.Response(200, json=chart(110.0, 100.0, prev_key="previousClose"))

    record = asyncio.run(make_adapter(handler).fetch_quote("INFY"))
    assert record.change == 10.0
    assert record.change_pct == 10.0


def test_volume_defaults_to_zero():
    def handler(request):
        return httpx.Response(200, json=chart(10.0, 10.0, volume=None))

    record = asyncio.run(make_adapter(handler).fetch_quote("INFY"))
    assert record.volume == 0


def test_infinite_volume_does_not_abort_mirror_loop():
    body = b'{"chart":{"result":[{"meta":{"regularMarketPrice":10.0,"regularMarketVolume":Infinity}}]}}'

    def handler(request):
        if request.url.host == "mirror-a.test":
            return httpx.Response(200, content=body, headers={"content-type": "application/json"})
        return httpx.Response(200, json=chart(11.0, 10.0, volume=500))

    record = asyncio.run(make_adapter(handler).fetch_quote("INFY"))
    assert record.price == 10.0
    assert record.volume == 0


def test_infinite_price_falls_through_to_next_mirror():
    body = b'{"chart":{"result":[{"meta":{"regularMarketPrice":Infinity}}]}}'

    def handler(request):
        if request.url.host == "mirror-a.test":
            return httpx.Response(200, content=body, headers={"content-type": "application/json"})
        return httpx.Response(200, json=chart(11.0, 10.0, volume=500))

    record = asyncio.run(make_adapter(handler).fetch_quote("INFY"))
    assert record.price == 11.0
    assert record.volume == 500


def test_request_uses_mapped_symbol_and_headers():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json=chart(10.0, 10.0))

    asyncio.run(make_adapter(handler, exchange=Exchange.BSE).fetch_quote("tcs"))
    request = seen[0]
    assert request.url.path.endswith("/TCS.BO")
    assert request.url.params["interval"] == "1d"
    assert request.url.params["range"] == "1d"
    assert "Mozilla" in request.headers["user-agent"]
    assert request.headers["accept"] == "application/json"


def test_batch_completes_despite_one_failing_symbol():
    def handler(request):
        symbol = request.url.path.rsplit("/", 1)[-1]
        if symbol == "S3.NS":
            return httpx.Response(500)
        return httpx.Response(200, json=chart(10.0, 10.0))

    symbols = [f"S{i}" for i in range(7)]
    result = asyncio.run(make_adapter(handler).try_resolve(symbols))
    assert sorted(result) == [s for s in symbols if s != "S3"]


def test_concurrency_bounded_by_batch_size():
    state = {"active": 0, "peak": 0}

    async def handler(request):
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.01)
        state["active"] -= 1
        return httpx.Response(200, json=chart(10.0, 10.0))

    symbols = [f"S{i}" for i in range(12)]
    result = asyncio.run(make_adapter(handler, mirrors=[MIRROR_A], batch_size=5).try_resolve(symbols))
    assert len(result) == 12
    assert state["peak"] == 5


def test_slow_mirror_is_bounded_by_timeout():
    async def handler(request):
        if request.url.host == "mirror-a.test":
            await asyncio.sleep(5)
        return httpx.Response(200, json=chart(10.0, 10.0))

    record = asyncio.run(make_adapter(handler, timeout_seconds=0.05).fetch_quote("INFY"))
    assert record is not None
    assert record.price == 10.0


def test_on_resolved_called_per_symbol():
    def handler(request):
        return httpx.Response(200, json=chart(10.0, 10.0))

    persisted = []

    async def on_resolved(record):
        persisted.append(record.symbol)
        return record

    asyncio.run(make_adapter(handler).try_resolve(["AAA", "BBB"], on_resolved=on_resolved))
    assert sorted(persisted) == ["AAA", "BBB"]

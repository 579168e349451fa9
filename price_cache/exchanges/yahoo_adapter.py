from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from price_cache.cache.freshness import utcnow
from price_cache.config.settings import settings
from price_cache.errors import MalformedResponseError, SourceUnreachableError
from price_cache.exchanges.base import OnResolved, QuoteSourceAdapter, resolve_in_batches
from price_cache.internal_metrics import MetricsCollector
from price_cache.schemas.quote import QuoteRecord, QuoteSource
from price_cache.utils.exchange_mapper import Exchange, to_provider_symbol
from price_cache.utils.symbol_normalizer import normalize_exchange
from price_cache.utils.validators import derive_change, is_valid_price, to_native_float, to_native_int

logger = logging.getLogger(__name__)


class YahooAdapter(QuoteSourceAdapter):
    """Unauthenticated chart endpoint with interchangeable mirror hosts."""

    name = QuoteSource.FALLBACK.value

    def __init__(
        self,
        client: httpx.AsyncClient,
        mirrors: list[str] | None = None,
        exchange: Exchange | None = None,
        batch_size: int | None = None,
        timeout_seconds: float | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = client
        self.mirrors = list(mirrors or settings.fallback_mirrors)
        self.exchange = exchange or normalize_exchange(settings.fallback_default_exchange)
        self.batch_size = batch_size or settings.fallback_batch_size
        self.timeout_seconds = timeout_seconds or settings.request_timeout_seconds
        self.metrics = metrics
        self._clock = clock

    def _headers(self) -> dict[str, str]:
        return {"User-Agent": settings.fallback_user_agent, "Accept": "application/json"}

    async def _get_json(self, url: str, params: dict[str, Any]) -> dict[str, Any]:
        start = time.perf_counter()
        success = False
        try:
            response = await asyncio.wait_for(
                self._client.get(url, params=params, headers=self._headers()),
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
            success = True
            return payload
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            raise SourceUnreachableError(f"HTTP {code}", status_code=code) from exc
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            raise SourceUnreachableError(f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise MalformedResponseError("response is not JSON") from exc
        finally:
            if self.metrics is not None:
                self.metrics.record_request(self.name, success, (time.perf_counter() - start) * 1000)

    @staticmethod
    def _extract_meta(payload: dict[str, Any]) -> dict[str, Any]:
        try:
            meta = payload["chart"]["result"][0]["meta"]
        except (KeyError, IndexError, TypeError) as exc:
            raise MalformedResponseError("missing chart.result[0].meta") from exc
        if not isinstance(meta, dict):
            raise MalformedResponseError("chart meta is not an object")
        return meta

    @staticmethod
    def _to_record(symbol: str, meta: dict[str, Any], fetched_at: datetime) -> QuoteRecord | None:
        price = to_native_float(meta.get("regularMarketPrice"))
        if not is_valid_price(price):
            return None
        previous_close = to_native_float(meta.get("chartPreviousClose")) or to_native_float(meta.get("previousClose"))
        change, change_pct = derive_change(price, previous_close)
        return QuoteRecord(
            symbol=symbol,
            price=price,
            change=change,
            change_pct=change_pct,
            volume=max(to_native_int(meta.get("regularMarketVolume")), 0),
            source=QuoteSource.FALLBACK,
            updated_at=fetched_at,
        )

    async def fetch_quote(self, symbol: str) -> QuoteRecord | None:
        """Try each mirror in order; the first one that yields a price wins."""
        fetched_at = self._clock()
        provider_symbol = to_provider_symbol(symbol, self.exchange)
        for base in self.mirrors:
            try:
                payload = await self._get_json(f"{base}/{provider_symbol}", {"interval": "1d", "range": "1d"})
                record = self._to_record(symbol, self._extract_meta(payload), fetched_at)
            except (SourceUnreachableError, MalformedResponseError) as exc:
                logger.warning(f"Fallback fetch failed from {base} for {symbol}: {exc}")
                continue
            if record is None:
                logger.warning(f"No market data from {base} for {symbol}")
                continue
            logger.debug(f"{symbol}: {record.price} ({record.change:+.2f}, {record.change_pct:.2f}%) via {base}")
            return record

        logger.error(f"All fallback mirrors failed for {symbol}")
        return None

    async def try_resolve(
        self,
        symbols: list[str],
        user_id: str | None = None,
        on_resolved: OnResolved | None = None,
    ) -> dict[str, QuoteRecord]:
        async def _one(symbol: str) -> QuoteRecord | None:
            record = await self.fetch_quote(symbol)
            if record is None:
                return None
            return await self.emit(record, on_resolved)

        return await resolve_in_batches(symbols, _one, self.batch_size)

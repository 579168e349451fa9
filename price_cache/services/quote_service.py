"""
Batch quote resolution.

Reads the store, serves fresh records as-is, and refreshes the rest through
the adapters in priority order. Every refreshed quote is written to the store
as soon as it arrives. Symbols no source could price fall back to their last
stored value, or are left out when nothing was ever stored.
"""
from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from price_cache.cache.freshness import is_fresh, utcnow
from price_cache.cache.quote_store import QuoteStore
from price_cache.config.settings import settings
from price_cache.exchanges.base import QuoteSourceAdapter
from price_cache.internal_metrics import MetricsCollector
from price_cache.schemas.quote import QuoteRecord
from price_cache.services.inflight import InflightRegistry
from price_cache.utils.symbol_normalizer import normalize_symbols

logger = logging.getLogger(__name__)


class QuoteService:
    """Resolves batches of symbols against the store and the quote sources.

    Adapters are tried in list order, highest precedence first.
    """

    def __init__(
        self,
        store: QuoteStore,
        adapters: list[QuoteSourceAdapter],
        ttl_seconds: float | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = utcnow,
        inflight: InflightRegistry | None = None,
    ):
        self.store = store
        self.adapters = list(adapters)
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.quote_ttl_seconds
        self.metrics = metrics
        self._clock = clock
        self._inflight = inflight or InflightRegistry()

    def is_fresh(self, record: QuoteRecord) -> bool:
        return is_fresh(record.updated_at, self.ttl_seconds, now=self._clock())

    async def resolve(self, symbols: Iterable[str], user_id: str | None = None) -> dict[str, QuoteRecord]:
        """Latest quote per requested symbol, keyed by normalized symbol.

        Fresh records come from the store. The rest are refetched, with the
        primary source used only when `user_id` is given. A symbol no source
        could price falls back to its last stored value, or is left out of the
        result when nothing was ever stored for it.
        """
        wanted = normalize_symbols(symbols)
        if not wanted:
            return {}

        stored = await self.store.get(wanted)
        fresh = {s: r for s, r in stored.items() if self.is_fresh(r)}
        needs_refetch = [s for s in wanted if s not in fresh]

        if not needs_refetch:
            logger.debug(f"All {len(wanted)} symbols fresh from cache")
            self._record_lookup(len(fresh), 0, 0)
            return {s: fresh[s] for s in wanted}

        logger.info(f"Stale/missing symbols: {needs_refetch}")
        owned, joined = self._inflight.claim(needs_refetch, primary_allowed=user_id is not None)
        self._record_lookup(len(fresh), len(needs_refetch), len(joined))

        refreshed: dict[str, QuoteRecord] = {}
        try:
            if owned:
                refreshed, last_known = await self._refresh(owned, user_id)
                stored.update(last_known)
        finally:
            self._inflight.release(owned)

        for symbol, flight in joined.items():
            record = await self._inflight.wait(flight)
            if record is not None:
                refreshed[symbol] = record

        result: dict[str, QuoteRecord] = {}
        for symbol in wanted:
            record = fresh.get(symbol) or refreshed.get(symbol) or stored.get(symbol)
            if record is not None:
                result[symbol] = record

        unresolved = [s for s in needs_refetch if s not in refreshed]
        if unresolved:
            logger.warning(
                f"No fresh quote for {unresolved}; "
                f"{sum(1 for s in unresolved if s in result)} served from last known value"
            )
        return result

    async def resolve_one(self, symbol: str) -> QuoteRecord | None:
        result = await self.resolve([symbol])
        return next(iter(result.values()), None)

    async def _refresh(self, owned: dict, user_id: str | None) -> tuple[dict[str, QuoteRecord], dict[str, QuoteRecord]]:
        # A flight that completed between our read and our claim already stored its result
        last_known = await self.store.get(list(owned))
        refreshed: dict[str, QuoteRecord] = {}
        pending: list[str] = []
        for symbol, flight in owned.items():
            record = last_known.get(symbol)
            if record is not None and self.is_fresh(record):
                refreshed[symbol] = record
                self._inflight.settle(flight, record)
            else:
                pending.append(symbol)

        async def on_resolved(record: QuoteRecord) -> QuoteRecord:
            saved = await self.store.upsert(record)
            flight = owned.get(saved.symbol)
            if flight is not None:
                self._inflight.settle(flight, saved)
            return saved

        for adapter in self.adapters:
            if not pending:
                break
            got = await adapter.try_resolve(pending, user_id=user_id, on_resolved=on_resolved)
            if got:
                logger.info(f"{adapter.name} source returned prices for: {sorted(got)}")
            refreshed.update(got)
            pending = [s for s in pending if s not in got]

        return refreshed, last_known

    def _record_lookup(self, hits: int, misses: int, joins: int):
        if self.metrics is not None:
            self.metrics.record_lookup(hits, misses, joins)

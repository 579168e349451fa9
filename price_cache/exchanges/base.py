from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from price_cache.errors import StoreUnavailableError
from price_cache.schemas.quote import QuoteRecord

logger = logging.getLogger(__name__)

# Called once per resolved symbol, as soon as it resolves. Returns the record as stored.
OnResolved = Callable[[QuoteRecord], Awaitable[QuoteRecord]]


class QuoteSourceAdapter(ABC):
    """A quote source tried by the resolver in priority order.

    try_resolve returns whatever subset of symbols it could price. A source
    that cannot serve the request at all returns an empty map; per-symbol
    failures are handled inside and never raised.
    """

    name: str = "unknown"

    @abstractmethod
    async def try_resolve(
        self,
        symbols: list[str],
        user_id: str | None = None,
        on_resolved: OnResolved | None = None,
    ) -> dict[str, QuoteRecord]:
        raise NotImplementedError

    @staticmethod
    async def emit(record: QuoteRecord, on_resolved: OnResolved | None) -> QuoteRecord:
        if on_resolved is None:
            return record
        return await on_resolved(record)


async def resolve_in_batches(
    symbols: list[str],
    fetch_one: Callable[[str], Awaitable[QuoteRecord | None]],
    batch_size: int,
) -> dict[str, QuoteRecord]:
    """Run fetch_one over symbols in concurrent groups of batch_size.

    Every request in a group runs to completion regardless of its siblings.
    A store failure from any of them is re-raised once the group settles.
    """
    result: dict[str, QuoteRecord] = {}
    size = max(batch_size, 1)
    for start in range(0, len(symbols), size):
        batch = symbols[start:start + size]
        settled = await asyncio.gather(*(fetch_one(s) for s in batch), return_exceptions=True)
        store_error: StoreUnavailableError | None = None
        for symbol, outcome in zip(batch, settled):
            if isinstance(outcome, StoreUnavailableError):
                store_error = outcome
            elif isinstance(outcome, BaseException):
                logger.error(f"Unexpected error resolving {symbol}: {outcome!r}")
            elif outcome is not None:
                result[symbol] = outcome
        if store_error is not None:
            raise store_error
    return result

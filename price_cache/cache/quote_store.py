"""
Latest-quote storage.

The store knows nothing about freshness or fetching: it returns whatever it
holds and replaces a symbol's record on upsert. A write whose updated_at is
older than the stored one is ignored so a slow fetch can never roll a symbol
back past a newer one.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Iterable
from threading import Lock

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from price_cache.database import get_db_session
from price_cache.errors import StoreUnavailableError
from price_cache.models import PriceCacheRow
from price_cache.schemas.quote import QuoteRecord, QuoteSource
from price_cache.utils.validators import normalize_timestamp

logger = logging.getLogger(__name__)


class QuoteStore(ABC):
    @abstractmethod
    async def get(self, symbols: Iterable[str]) -> dict[str, QuoteRecord]:
        raise NotImplementedError

    @abstractmethod
    async def upsert(self, record: QuoteRecord) -> QuoteRecord:
        raise NotImplementedError


def _is_older(candidate: QuoteRecord, stored: QuoteRecord) -> bool:
    return normalize_timestamp(candidate.updated_at) < normalize_timestamp(stored.updated_at)


class InMemoryQuoteStore(QuoteStore):
    def __init__(self):
        self._rows: dict[str, QuoteRecord] = {}
        self._lock = Lock()

    async def get(self, symbols: Iterable[str]) -> dict[str, QuoteRecord]:
        with self._lock:
            return {s: self._rows[s] for s in symbols if s in self._rows}

    async def upsert(self, record: QuoteRecord) -> QuoteRecord:
        with self._lock:
            stored = self._rows.get(record.symbol)
            if stored is not None and _is_older(record, stored):
                return stored
            self._rows[record.symbol] = record
            return record

    def __len__(self) -> int:
        with self._lock:
            return len(self._rows)


class SqlQuoteStore(QuoteStore):
    """SQLAlchemy-backed store. Sessions run in a worker thread."""

    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory

    @staticmethod
    def _to_record(row: PriceCacheRow) -> QuoteRecord:
        return QuoteRecord(
            symbol=row.symbol,
            price=row.price,
            change=row.change,
            change_pct=row.change_pct,
            volume=row.volume,
            source=QuoteSource(row.source),
            updated_at=normalize_timestamp(row.updated_at),
        )

    def _get_sync(self, symbols: list[str]) -> dict[str, QuoteRecord]:
        with get_db_session(self._session_factory) as session:
            rows = session.query(PriceCacheRow).filter(PriceCacheRow.symbol.in_(symbols)).all()
            return {row.symbol: self._to_record(row) for row in rows}

    def _upsert_sync(self, record: QuoteRecord) -> QuoteRecord:
        with get_db_session(self._session_factory) as session:
            row = session.query(PriceCacheRow).filter_by(symbol=record.symbol).first()
            if row is None:
                row = PriceCacheRow(symbol=record.symbol)
                session.add(row)
            elif _is_older(record, self._to_record(row)):
                return self._to_record(row)
            row.price = record.price
            row.change = record.change
            row.change_pct = record.change_pct
            row.volume = record.volume
            row.source = record.source.value
            row.updated_at = normalize_timestamp(record.updated_at)
            return record

    async def get(self, symbols: Iterable[str]) -> dict[str, QuoteRecord]:
        wanted = list(symbols)
        if not wanted:
            return {}
        try:
            return await asyncio.to_thread(self._get_sync, wanted)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"quote store read failed: {exc}") from exc

    async def upsert(self, record: QuoteRecord) -> QuoteRecord:
        try:
            try:
                return await asyncio.to_thread(self._upsert_sync, record)
            except IntegrityError:
                # Concurrent first insert of the same symbol; the row exists now
                logger.debug(f"Retrying upsert for {record.symbol} after insert race")
                return await asyncio.to_thread(self._upsert_sync, record)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"quote store write failed: {exc}") from exc

"""
Brokerage quote source, scoped to one user's API credentials.

Base URL and auth headers stay inside this module so another brokerage can be
swapped in behind QuoteSourceAdapter.
"""
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
from price_cache.credentials import CredentialStore
from price_cache.errors import (
    AdapterNotApplicable,
    MalformedResponseError,
    SourceUnreachableError,
    StoreUnavailableError,
)
from price_cache.exchanges.base import OnResolved, QuoteSourceAdapter, resolve_in_batches
from price_cache.internal_metrics import MetricsCollector
from price_cache.schemas.quote import BrokerCredentials, QuoteRecord, QuoteSource
from price_cache.utils.validators import is_valid_price, normalize_timestamp, to_native_float, to_native_int

logger = logging.getLogger(__name__)


class GrowwAdapter(QuoteSourceAdapter):
    name = QuoteSource.PRIMARY.value

    def __init__(
        self,
        client: httpx.AsyncClient,
        credential_store: CredentialStore,
        base_url: str | None = None,
        batch_size: int | None = None,
        timeout_seconds: float | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._client = client
        self._credential_store = credential_store
        self.base_url = (base_url or settings.primary_base_url).rstrip("/")
        self.batch_size = batch_size or settings.fallback_batch_size
        self.timeout_seconds = timeout_seconds or settings.request_timeout_seconds
        self.metrics = metrics
        self._clock = clock

    async def load_credentials(self, user_id: str) -> BrokerCredentials:
        credentials = await self._credential_store.get(user_id)
        if credentials is None or not credentials.api_key or not credentials.access_token:
            raise AdapterNotApplicable(f"no broker credentials for user {user_id}")
        if credentials.token_expiry and normalize_timestamp(credentials.token_expiry) <= self._clock():
            raise AdapterNotApplicable(f"broker token expired for user {user_id}")
        return credentials

    async def _request(self, credentials: BrokerCredentials, endpoint: str, params: dict[str, Any]) -> dict[str, Any]:
        start = time.perf_counter()
        success = False
        try:
            response = await asyncio.wait_for(
                self._client.get(
                    f"{self.base_url}{endpoint}",
                    params=params,
                    headers={
                        "Authorization": f"Bearer {credentials.access_token}",
                        "x-api-key": credentials.api_key,
                        "Content-Type": "application/json",
                    },
                ),
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
            success = True
            return payload
        except httpx.HTTPStatusError as exc:
            code = exc.response.status_code
            raise SourceUnreachableError(f"Groww API error ({code})", status_code=code) from exc
        except (httpx.HTTPError, asyncio.TimeoutError) as exc:
            raise SourceUnreachableError(f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise MalformedResponseError("response is not JSON") from exc
        finally:
            if self.metrics is not None:
                self.metrics.record_request(self.name, success, (time.perf_counter() - start) * 1000)

    async def fetch_quote(self, credentials: BrokerCredentials, symbol: str) -> QuoteRecord:
        fetched_at = self._clock()
        data = await self._request(credentials, "/market/quote", {"symbol": symbol})
        if not isinstance(data, dict):
            raise MalformedResponseError("quote payload is not an object")
        price = to_native_float(data.get("lastPrice"))
        if not is_valid_price(price):
            raise MalformedResponseError("missing lastPrice")
        return QuoteRecord(
            symbol=symbol,
            price=price,
            change=round(to_native_float(data.get("change")), 2),
            change_pct=round(to_native_float(data.get("changePct")), 2),
            volume=max(to_native_int(data.get("volume")), 0),
            source=QuoteSource.PRIMARY,
            updated_at=fetched_at,
        )

    async def try_resolve(
        self,
        symbols: list[str],
        user_id: str | None = None,
        on_resolved: OnResolved | None = None,
    ) -> dict[str, QuoteRecord]:
        if not user_id or not symbols:
            return {}
        try:
            credentials = await self.load_credentials(user_id)
        except AdapterNotApplicable as exc:
            logger.info(f"Primary source skipped: {exc}")
            return {}
        except StoreUnavailableError as exc:
            logger.error(f"Primary source skipped, credential lookup failed: {exc}")
            return {}

        async def _one(symbol: str) -> QuoteRecord | None:
            try:
                record = await self.fetch_quote(credentials, symbol)
            except (SourceUnreachableError, MalformedResponseError) as exc:
                logger.warning(f"Primary fetch failed for {symbol}: {exc}")
                return None
            return await self.emit(record, on_resolved)

        return await resolve_in_batches(symbols, _one, self.batch_size)

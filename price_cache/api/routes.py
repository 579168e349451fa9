from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from functools import lru_cache

import httpx
from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from price_cache.cache.quote_store import InMemoryQuoteStore, QuoteStore, SqlQuoteStore
from price_cache.config.settings import settings
from price_cache.credentials import CredentialStore, InMemoryCredentialStore, SqlCredentialStore
from price_cache.database import init_db
from price_cache.errors import StoreUnavailableError
from price_cache.exchanges.groww_adapter import GrowwAdapter
from price_cache.exchanges.yahoo_adapter import YahooAdapter
from price_cache.internal_metrics import MetricsCollector
from price_cache.schemas.quote import QuoteRecord, QuoteSchema, QuotesResponseSchema
from price_cache.services.quote_service import QuoteService
from price_cache.utils.symbol_normalizer import normalize_symbol, normalize_symbols

logger = logging.getLogger(__name__)
router = APIRouter()

metrics = MetricsCollector()


@lru_cache
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.request_timeout_seconds, follow_redirects=True)


def _build_stores() -> tuple[QuoteStore, CredentialStore]:
    if settings.quote_store_backend.lower() == "memory":
        return InMemoryQuoteStore(), InMemoryCredentialStore()
    init_db()
    return SqlQuoteStore(), SqlCredentialStore()


@lru_cache
def get_quote_service() -> QuoteService:
    store, credential_store = _build_stores()
    client = get_http_client()
    adapters = [
        GrowwAdapter(client, credential_store, metrics=metrics),
        YahooAdapter(client, metrics=metrics),
    ]
    return QuoteService(store, adapters, metrics=metrics)


async def get_price(symbol: str) -> QuoteRecord | None:
    """Latest quote for one symbol, or None when no source has ever priced it."""
    return await get_quote_service().resolve_one(symbol)


async def get_prices(symbols: list[str], user_id: str | None = None) -> dict[str, QuoteRecord]:
    """Latest quotes keyed by symbol; unpriceable symbols are absent."""
    return await get_quote_service().resolve(symbols, user_id=user_id)


def error_response(error_code: str, message: str, status_code: int = 400, **extra):
    payload = {
        "schema_version": settings.schema_version,
        "status": "error",
        "error_code": error_code,
        "message": message,
        **extra,
    }
    return JSONResponse(payload, status_code=status_code)


def create_app(lifespan=None) -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = request.headers.get("x-request-id", str(uuid.uuid4()))
        response = None
        start = time.perf_counter()
        try:
            response = await call_next(request)
            return response
        finally:
            latency_ms = round((time.perf_counter() - start) * 1000, 2)
            logger.info(
                "request_complete",
                extra={
                    "request_id": request_id,
                    "path": request.url.path,
                    "symbol": request.query_params.get("symbol", ""),
                    "latency_ms": latency_ms,
                    "status_code": response.status_code if response else None,
                },
            )

    app.include_router(router)
    return app


@router.get("/health")
def health():
    return {"schema_version": settings.schema_version, "status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/metrics")
def all_metrics():
    output = metrics.global_metrics()
    output["schema_version"] = settings.schema_version
    return output


@router.get("/quote", response_model=QuoteSchema)
async def quote(symbol: str = Query(...), service: QuoteService = Depends(get_quote_service)):
    try:
        clean_symbol = normalize_symbol(symbol)
    except ValueError:
        return error_response("INVALID_INPUT", "Invalid symbol")

    try:
        record = await service.resolve_one(clean_symbol)
    except StoreUnavailableError as exc:
        logger.error(f"Quote store unavailable: {exc}")
        return error_response("STORE_UNAVAILABLE", "Quote store unavailable", status_code=503)

    if record is None:
        return error_response("PRICE_UNAVAILABLE", "Price unavailable", status_code=404, symbol=clean_symbol)
    return QuoteSchema.from_record(record, settings.schema_version, service.is_fresh(record))


@router.get("/quotes", response_model=QuotesResponseSchema)
async def quotes(
    symbols: str = Query(..., description="Comma-separated symbols"),
    user_id: str | None = Query(None),
    service: QuoteService = Depends(get_quote_service),
):
    requested = normalize_symbols(symbols.split(","))
    try:
        clean = [normalize_symbol(s) for s in requested]
    except ValueError:
        return error_response("INVALID_INPUT", "Invalid symbol list")
    if not clean:
        return error_response("INVALID_INPUT", "No symbols requested")

    try:
        records = await service.resolve(clean, user_id=user_id)
    except StoreUnavailableError as exc:
        logger.error(f"Quote store unavailable: {exc}")
        return error_response("STORE_UNAVAILABLE", "Quote store unavailable", status_code=503)

    return QuotesResponseSchema(
        schema_version=settings.schema_version,
        quotes={
            symbol: QuoteSchema.from_record(record, settings.schema_version, service.is_fresh(record))
            for symbol, record in records.items()
        },
        missing=[s for s in clean if s not in records],
    )

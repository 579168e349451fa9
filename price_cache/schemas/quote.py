from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, field_validator


class QuoteSource(str, Enum):
    PRIMARY = "primary"
    FALLBACK = "fallback"


class QuoteRecord(BaseModel):
    """Latest known quote for one symbol, as stored and as returned to callers."""

    symbol: str
    price: float
    change: float = 0.0
    change_pct: float = 0.0
    volume: int = Field(default=0, ge=0)
    source: QuoteSource
    updated_at: datetime

    @field_validator("symbol")
    @classmethod
    def _upper_symbol(cls, value: str) -> str:
        return value.strip().upper()


class BrokerCredentials(BaseModel):
    user_id: str
    api_key: str | None = None
    access_token: str | None = None
    token_expiry: datetime | None = None


class QuoteSchema(BaseModel):
    schema_version: str
    symbol: str
    price: float
    change: float
    change_pct: float
    volume: int
    source: str
    updated_at: str
    is_fresh: bool

    @classmethod
    def from_record(cls, record: QuoteRecord, schema_version: str, is_fresh: bool) -> "QuoteSchema":
        return cls(
            schema_version=schema_version,
            symbol=record.symbol,
            price=record.price,
            change=record.change,
            change_pct=record.change_pct,
            volume=record.volume,
            source=record.source.value,
            updated_at=record.updated_at.isoformat(),
            is_fresh=is_fresh,
        )


class QuotesResponseSchema(BaseModel):
    schema_version: str
    quotes: dict[str, QuoteSchema]
    missing: list[str]

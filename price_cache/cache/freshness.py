from __future__ import annotations

from datetime import datetime, timezone

from price_cache.utils.validators import normalize_timestamp

DEFAULT_TTL_SECONDS = 60


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def age_seconds(updated_at: datetime, now: datetime | None = None) -> float:
    ref = normalize_timestamp(now) if now is not None else utcnow()
    return (ref - normalize_timestamp(updated_at)).total_seconds()


def is_fresh(updated_at: datetime, ttl_seconds: float = DEFAULT_TTL_SECONDS, now: datetime | None = None) -> bool:
    """A quote is usable without refetching while strictly younger than the TTL."""
    return age_seconds(updated_at, now) < ttl_seconds

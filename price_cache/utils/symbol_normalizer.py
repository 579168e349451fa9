import re
from collections.abc import Iterable

from price_cache.utils.exchange_mapper import Exchange

_SYMBOL_PATTERN = re.compile(r"^[A-Za-z0-9&._-]{1,32}$")


def normalize_symbol(symbol: str) -> str:
    cleaned = symbol.strip().upper()
    if not cleaned or not _SYMBOL_PATTERN.match(cleaned):
        raise ValueError("invalid symbol")
    return cleaned


def normalize_symbols(symbols: Iterable[str]) -> list[str]:
    """Uppercase and de-duplicate, keeping first-seen order. Blank entries are dropped."""
    out: list[str] = []
    seen: set[str] = set()
    for symbol in symbols:
        value = str(symbol).strip().upper()
        if not value or value in seen:
            continue
        seen.add(value)
        out.append(value)
    return out


def normalize_exchange(exchange: str) -> Exchange:
    try:
        return Exchange(exchange.strip().upper())
    except Exception as exc:
        raise ValueError("invalid exchange") from exc

from enum import Enum


class Exchange(str, Enum):
    NSE = "NSE"
    BSE = "BSE"
    NASDAQ = "NASDAQ"


_SUFFIX_MAP = {
    Exchange.NSE: ".NS",
    Exchange.BSE: ".BO",
    Exchange.NASDAQ: "",
}


def to_provider_symbol(symbol: str, exchange: Exchange = Exchange.NSE) -> str:
    """Internal ticker to the fallback source's wire ticker (RELIANCE -> RELIANCE.NS)."""
    upper = symbol.strip().upper()
    suffix = _SUFFIX_MAP[exchange]
    if suffix and upper.endswith(suffix):
        return upper
    return f"{upper}{suffix}"

from .market import MarketItem, RankedResult
from .entry import CacheEntry, ENVELOPE_VERSION

__all__ = [
    "MarketItem",
    "RankedResult",
    "CacheEntry",
    "ENVELOPE_VERSION",
]

from .base import Coverage, MarketSource, PageResult, to_float
from .client import ResponseStatus, UpstreamClient, UpstreamResponse

__all__ = [
    "Coverage",
    "MarketSource",
    "PageResult",
    "to_float",
    "ResponseStatus",
    "UpstreamClient",
    "UpstreamResponse",
]

"""
Error taxonomy for upstream fetching and cache coordination.

Upstream errors are split by what the caller can do about them:
- rate limited: stop asking, the retry delay takes over
- transient: retry locally a bounded number of times
- fatal: no data at all could be obtained

Store-side errors (corrupt entries, lease store failures) never fail a request
on their own.
"""

from typing import Optional


class MoversError(Exception):
    """Base class for all errors raised by the movers cache."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class UpstreamError(MoversError):
    """An upstream provider did not return usable data."""

    status_code = 502

    def __init__(self, message: str, *, provider: Optional[str] = None, upstream_status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.upstream_status = upstream_status


class UpstreamTransientError(UpstreamError):
    """Network error, timeout, or non-429 error status; worth a local retry."""


class UpstreamFatal(UpstreamError):
    """No data at all was obtainable from the upstream."""


class UpstreamRateLimited(UpstreamFatal):
    """The upstream answered HTTP 429.

    Raised as fatal only when it prevents any data at all (first page);
    later pages absorb it into a partial result.
    """

    def __init__(
        self,
        message: str = "Upstream rate limit reached",
        *,
        provider: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        super().__init__(message, provider=provider, upstream_status=429)
        self.retry_after = retry_after


class CacheCorrupt(MoversError):
    """A stored entry could not be decoded; treated as a cache miss."""


class LockStoreError(MoversError):
    """The lease marker could not be read or written; refresh proceeds unprotected."""


class RefreshTimeout(MoversError):
    """A synchronous refresh exceeded its deadline."""

    status_code = 504

    def __init__(self, message: str = "Request timeout. Try again."):
        super().__init__(message)


class DatasetUnavailable(MoversError):
    """The requested dataset is unknown or not configured."""

    def __init__(self, message: str, *, status_code: int = 404):
        super().__init__(message)
        self.status_code = status_code


__all__ = [
    "MoversError",
    "UpstreamError",
    "UpstreamTransientError",
    "UpstreamFatal",
    "UpstreamRateLimited",
    "CacheCorrupt",
    "LockStoreError",
    "RefreshTimeout",
    "DatasetUnavailable",
]

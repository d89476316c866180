"""Shared HTTP client for upstream market-data providers.

Every response is classified instead of raised, so pagination and partition
logic can decide what a 429 or a 5xx means for the refresh as a whole.
Cancelling the awaiting task aborts the underlying httpx connection.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import httpx

from ..errors import UpstreamRateLimited, UpstreamTransientError

logger = logging.getLogger(__name__)


class ResponseStatus(str, Enum):
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


@dataclass(frozen=True)
class UpstreamResponse:
    status: ResponseStatus
    url: str
    status_code: Optional[int] = None
    data: Any = None
    retry_after: Optional[float] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is ResponseStatus.OK

    def unwrap(self, provider: Optional[str] = None) -> Any:
        """Return the decoded body or raise the matching upstream error."""
        if self.status is ResponseStatus.RATE_LIMITED:
            raise UpstreamRateLimited(
                f"{provider or 'upstream'} rate limited ({self.url})",
                provider=provider,
                retry_after=self.retry_after,
            )
        if self.status is ResponseStatus.ERROR:
            raise UpstreamTransientError(
                f"{provider or 'upstream'} error: {self.error or self.status_code}",
                provider=provider,
                upstream_status=self.status_code,
            )
        return self.data


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class UpstreamClient:
    """Thin wrapper around a lazily created ``httpx.AsyncClient``."""

    def __init__(
        self,
        *,
        timeout_s: float = 15.0,
        headers: Optional[Dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.timeout_s = timeout_s
        self._headers = {"Accept": "application/json, text/plain, */*", **(headers or {})}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout_s,
                headers=self._headers,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get_json(
        self,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> UpstreamResponse:
        client = await self._get_client()
        try:
            response = await client.get(url, params=params, headers=headers)
        except httpx.HTTPError as exc:
            logger.warning("Upstream request failed: %s %s", url, exc.__class__.__name__)
            return UpstreamResponse(status=ResponseStatus.ERROR, url=url, error=str(exc) or exc.__class__.__name__)

        if response.status_code == 429:
            return UpstreamResponse(
                status=ResponseStatus.RATE_LIMITED,
                url=url,
                status_code=429,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        if response.status_code >= 400:
            return UpstreamResponse(
                status=ResponseStatus.ERROR,
                url=url,
                status_code=response.status_code,
                error=response.text[:200],
            )
        try:
            data = response.json()
        except ValueError:
            return UpstreamResponse(
                status=ResponseStatus.ERROR,
                url=url,
                status_code=response.status_code,
                error="invalid JSON body",
            )
        return UpstreamResponse(status=ResponseStatus.OK, url=url, status_code=response.status_code, data=data)


__all__ = ["ResponseStatus", "UpstreamResponse", "UpstreamClient"]

"""
Freshness policy engine

Stale-while-revalidate per dataset:

| state              | condition                                         | response                         |
|--------------------|---------------------------------------------------|----------------------------------|
| fresh              | age < soft refresh window                         | cached payload                   |
| update in progress | stale, live lease                                 | cached payload                   |
| rate limited       | stale, no lease, last attempt < retry delay       | cached payload, no refresh       |
| proactive refresh  | stale, no lease, last attempt >= retry delay      | cached payload + background task |
| cold start         | no entry (or past the optional hard expiry)       | synchronous, time-bounded fetch  |

``decide`` is pure; ``DatasetRefresher`` performs the store, lease and
pipeline I/O around it.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol

import structlog

from ..clock import Clock, now_ms
from ..errors import RefreshTimeout
from ..types import CacheEntry, RankedResult
from .entries import EntryStore
from .leases import AdvisoryLease
from .tasks import RefreshTaskRegistry

logger = logging.getLogger(__name__)


class FreshnessAction(str, Enum):
    FRESH = "fresh"
    UPDATE_IN_PROGRESS = "update_in_progress"
    PROACTIVE_REFRESH = "proactive_refresh"
    RATE_LIMITED = "rate_limited"
    COLD_START = "cold_start"


class ServeSource(str, Enum):
    """Value of the ``X-Source`` response header."""

    CACHE_FRESH = "Cache-Fresh"
    CACHE_UPDATE_IN_PROGRESS = "Cache-UpdateInProgress"
    CACHE_PROACTIVE = "Cache-Proactive"
    CACHE_RATE_LIMITED = "Cache-RateLimited"
    LIVE_FETCH = "Live-Fetch"
    CACHE_FALLBACK_ERROR = "Cache-Fallback-Error"


@dataclass(frozen=True)
class RefreshPolicy:
    soft_refresh_seconds: float
    retry_delay_seconds: float
    lease_timeout_seconds: float = 120.0
    cold_start_timeout_seconds: float = 45.0
    hard_expiry_seconds: Optional[float] = None

    @property
    def soft_refresh_ms(self) -> int:
        return int(self.soft_refresh_seconds * 1000)

    @property
    def retry_delay_ms(self) -> int:
        return int(self.retry_delay_seconds * 1000)

    @property
    def lease_timeout_ms(self) -> int:
        return int(self.lease_timeout_seconds * 1000)

    @property
    def hard_expiry_ms(self) -> Optional[int]:
        if self.hard_expiry_seconds is None:
            return None
        return int(self.hard_expiry_seconds * 1000)


def decide(
    entry: Optional[CacheEntry],
    lease_held: bool,
    now: int,
    policy: RefreshPolicy,
) -> FreshnessAction:
    if entry is None:
        return FreshnessAction.COLD_START

    age = now - entry.timestamp
    if age < policy.soft_refresh_ms:
        return FreshnessAction.FRESH
    if lease_held:
        return FreshnessAction.UPDATE_IN_PROGRESS
    if now - entry.last_update_attempt < policy.retry_delay_ms:
        return FreshnessAction.RATE_LIMITED
    hard_expiry = policy.hard_expiry_ms
    if hard_expiry is not None and age >= hard_expiry:
        return FreshnessAction.COLD_START
    return FreshnessAction.PROACTIVE_REFRESH


class Refreshable(Protocol):
    async def run(self, *, deep: bool = True) -> RankedResult: ...


@dataclass(frozen=True)
class ServeResult:
    payload: RankedResult
    source: ServeSource
    entry: Optional[CacheEntry] = None

    @property
    def last_update_failed(self) -> bool:
        return bool(self.entry and self.entry.last_update_failed)


class DatasetRefresher:
    """Serves one dataset and coordinates its refreshes."""

    def __init__(
        self,
        key: str,
        pipeline: Refreshable,
        *,
        entries: EntryStore,
        leases: AdvisoryLease,
        policy: RefreshPolicy,
        tasks: RefreshTaskRegistry,
        clock: Clock = now_ms,
        winner_poll_seconds: float = 0.25,
    ) -> None:
        self.key = key
        self.pipeline = pipeline
        self.policy = policy
        self._entries = entries
        self._leases = leases
        self._tasks = tasks
        self._clock = clock
        self._winner_poll_seconds = winner_poll_seconds

    async def serve(self) -> ServeResult:
        # Background tasks spawned here copy the bound dataset into their context
        with structlog.contextvars.bound_contextvars(dataset=self.key):
            result = await self._serve()
        logger.debug("dataset=%s x_source=%s", self.key, result.source.value)
        return result

    async def _serve(self) -> ServeResult:
        now = self._clock()
        entry, lease_held = await asyncio.gather(
            self._entries.get(self.key),
            self._leases.is_held(self.key, now, self.policy.lease_timeout_ms),
        )
        action = decide(entry, lease_held, now, self.policy)
        logger.debug("dataset=%s action=%s", self.key, action.value)

        if action is FreshnessAction.FRESH:
            return ServeResult(entry.payload, ServeSource.CACHE_FRESH, entry)
        if action is FreshnessAction.UPDATE_IN_PROGRESS:
            return ServeResult(entry.payload, ServeSource.CACHE_UPDATE_IN_PROGRESS, entry)
        if action is FreshnessAction.RATE_LIMITED:
            return ServeResult(entry.payload, ServeSource.CACHE_RATE_LIMITED, entry)
        if action is FreshnessAction.PROACTIVE_REFRESH:
            if not await self._leases.acquire(self.key, now):
                return ServeResult(entry.payload, ServeSource.CACHE_UPDATE_IN_PROGRESS, entry)
            self._tasks.spawn(self._refresh_in_background(entry), name=f"refresh:{self.key}")
            return ServeResult(entry.payload, ServeSource.CACHE_PROACTIVE, entry)
        with structlog.contextvars.bound_contextvars(refresh="synchronous"):
            return await self._refresh_synchronously(entry, now)

    async def refresh(self, *, deep: bool = True) -> CacheEntry:
        """Run the pipeline and store the result. Raises on pipeline failure."""
        result = await self.pipeline.run(deep=deep)
        entry = CacheEntry.from_result(result)
        await self._write(entry)
        logger.info(
            "Refreshed %s: %d gainers, %d losers%s",
            self.key,
            len(result.gainers),
            len(result.losers),
            " (partial)" if result.is_partial else "",
        )
        return entry

    async def _refresh_in_background(self, previous: CacheEntry) -> None:
        structlog.contextvars.bind_contextvars(refresh="background")
        try:
            await self.refresh(deep=True)
        except Exception:  # noqa: BLE001
            logger.error("Background refresh failed for %s", self.key, exc_info=True)
            await self._record_failure(previous)
        finally:
            await self._leases.release(self.key)

    async def _refresh_synchronously(self, previous: Optional[CacheEntry], now: int) -> ServeResult:
        if not await self._leases.acquire(self.key, now):
            return await self._wait_for_winner(previous)

        try:
            entry = await asyncio.wait_for(
                self.refresh(deep=False),
                timeout=self.policy.cold_start_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("Synchronous refresh of %s timed out", self.key)
            fallback = await self._fallback(previous)
            if fallback is None:
                raise RefreshTimeout() from exc
            return ServeResult(fallback.payload, ServeSource.CACHE_FALLBACK_ERROR, fallback)
        except Exception as exc:
            fallback = await self._fallback(previous)
            if fallback is None:
                raise
            logger.warning("Synchronous refresh of %s failed, serving fallback: %s", self.key, exc)
            return ServeResult(fallback.payload, ServeSource.CACHE_FALLBACK_ERROR, fallback)
        finally:
            await self._leases.release(self.key)

        return ServeResult(entry.payload, ServeSource.LIVE_FETCH, entry)

    async def _wait_for_winner(self, previous: Optional[CacheEntry]) -> ServeResult:
        """Strict mode: another request holds the lease; wait for its entry."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.policy.cold_start_timeout_seconds
        while loop.time() < deadline:
            await asyncio.sleep(self._winner_poll_seconds)
            entry = await self._entries.get(self.key)
            if entry is not None and (previous is None or entry.timestamp > previous.timestamp):
                return ServeResult(entry.payload, ServeSource.CACHE_UPDATE_IN_PROGRESS, entry)
        if previous is not None:
            return ServeResult(previous.payload, ServeSource.CACHE_FALLBACK_ERROR, previous)
        raise RefreshTimeout()

    async def _fallback(self, previous: Optional[CacheEntry]) -> Optional[CacheEntry]:
        # Another request may have stored an entry while this one was fetching
        return await self._record_failure(previous)

    async def _record_failure(self, previous: Optional[CacheEntry]) -> Optional[CacheEntry]:
        """Stamp the failed attempt on the newest stored entry.

        The store is re-read so that an entry written by a concurrent refresh
        keeps its payload; ``previous`` is used only when the read fails or
        finds nothing.
        """
        try:
            current = await self._entries.get(self.key)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to re-read entry for %s: %s", self.key, exc)
            current = None
        if current is None or (previous is not None and current.timestamp < previous.timestamp):
            current = previous
        if current is None:
            return None
        failed = current.mark_failed(self._clock())
        await self._write(failed)
        return failed

    async def _write(self, entry: CacheEntry) -> None:
        try:
            await self._entries.put(self.key, entry)
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to store entry for %s: %s", self.key, exc)

    async def status(self) -> Dict[str, Any]:
        now = self._clock()
        entry = await self._entries.get(self.key)
        lease_at = await self._leases.acquired_at(self.key)
        refreshing = lease_at is not None and now - lease_at < self.policy.lease_timeout_ms
        return {
            "key": self.key,
            "cached": entry is not None,
            "ageSeconds": round(entry.age_ms(now) / 1000, 1) if entry else None,
            "lastUpdateAttempt": entry.last_update_attempt if entry else None,
            "lastUpdateFailed": entry.last_update_failed if entry else None,
            "isPartial": entry.is_partial if entry else None,
            "refreshing": refreshing,
            "nextAction": decide(entry, refreshing, now, self.policy).value,
        }


__all__ = [
    "FreshnessAction",
    "ServeSource",
    "RefreshPolicy",
    "ServeResult",
    "DatasetRefresher",
    "decide",
]

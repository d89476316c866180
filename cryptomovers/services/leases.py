"""
Refresh leases

A lease is a timestamped marker with a short TTL meaning "a refresh for this
dataset is believed to be in flight". In advisory mode acquiring always
writes the marker, so two requests racing between the read and the write can
both refresh; refreshes are idempotent and last write wins, so the cost is a
duplicate upstream call. Strict mode writes only when no marker exists.

Store failures never fail a request: acquiring degrades to "proceed without
protection", reading to "not held", releasing to a logged no-op.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Optional, TypeVar

from ..cache import KeyValueStore
from ..errors import LockStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AdvisoryLease:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        ttl_seconds: int = 120,
        strict: bool = False,
        suffix: str = "_lock",
    ) -> None:
        self._store = store
        self._ttl = ttl_seconds
        self.strict = strict
        self._suffix = suffix

    def marker_key(self, key: str) -> str:
        return f"{key}{self._suffix}"

    async def _call(self, operation: str, marker: str, pending: Awaitable[T]) -> T:
        try:
            return await pending
        except Exception as exc:  # noqa: BLE001
            raise LockStoreError(f"lease {operation} failed for {marker}: {exc}") from exc

    async def acquire(self, key: str, now_ms: int) -> bool:
        """Write the marker. False only when strict mode finds another holder."""
        marker = self.marker_key(key)
        try:
            if self.strict:
                return await self._call("write", marker, self._store.add(marker, str(now_ms), ttl=self._ttl))
            await self._call("write", marker, self._store.set(marker, str(now_ms), ttl=self._ttl))
            return True
        except LockStoreError as exc:
            logger.warning("%s; refreshing without lease", exc.message)
            return True

    async def release(self, key: str) -> None:
        marker = self.marker_key(key)
        try:
            await self._call("release", marker, self._store.delete(marker))
        except LockStoreError as exc:
            logger.warning(exc.message)

    async def acquired_at(self, key: str) -> Optional[int]:
        marker = self.marker_key(key)
        try:
            raw = await self._call("read", marker, self._store.get(marker))
        except LockStoreError as exc:
            logger.warning(exc.message)
            return None
        if not raw:
            return None
        try:
            return int(raw)
        except ValueError:
            return None

    async def is_held(self, key: str, now_ms: int, timeout_ms: int) -> bool:
        acquired = await self.acquired_at(key)
        return acquired is not None and (now_ms - acquired) < timeout_ms


__all__ = ["AdvisoryLease"]

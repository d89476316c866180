"""Key/value stores shared by every request handler.

Values are opaque strings with a per-key TTL. The memory store keeps them in
process (single worker, tests); the Redis store is the shared, durable backend
used when ``redis_url`` is configured.
"""

from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis.asyncio as redis

from .config import Settings

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """TTL-capable string store."""

    name: str

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Return the stored value or None when absent/expired."""

    @abstractmethod
    async def set(self, key: str, value: str, *, ttl: int) -> None:
        """Store ``value`` under ``key`` for ``ttl`` seconds (last write wins)."""

    @abstractmethod
    async def add(self, key: str, value: str, *, ttl: int) -> bool:
        """Store only when ``key`` is absent. Returns True when written."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key``; absent keys are not an error."""

    async def close(self) -> None:
        return None


@dataclass
class _Slot:
    value: str
    expires_at: float


class MemoryStore(KeyValueStore):
    """Simple in-memory TTL store with LRU eviction"""

    name = "memory"

    def __init__(self, max_size: int = 1000, clock: Callable[[], float] = time.time):
        self.max_size = max_size
        self._clock = clock
        self._data: Dict[str, _Slot] = {}
        self._access_order: list = []
        self._lock = asyncio.Lock()

    def _live(self, key: str, now: float) -> Optional[_Slot]:
        slot = self._data.get(key)
        if slot is None:
            return None
        if now > slot.expires_at:
            self._forget(key)
            return None
        return slot

    def _forget(self, key: str) -> None:
        self._data.pop(key, None)
        if key in self._access_order:
            self._access_order.remove(key)

    def _touch(self, key: str) -> None:
        if key in self._access_order:
            self._access_order.remove(key)
        self._access_order.append(key)

    def _write(self, key: str, value: str, ttl: int) -> None:
        self._data[key] = _Slot(value=value, expires_at=self._clock() + ttl)
        self._touch(key)
        while len(self._data) > self.max_size:
            oldest_key = self._access_order.pop(0)
            self._data.pop(oldest_key, None)

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            slot = self._live(key, self._clock())
            if slot is None:
                return None
            self._touch(key)
            return slot.value

    async def set(self, key: str, value: str, *, ttl: int) -> None:
        async with self._lock:
            self._write(key, value, ttl)

    async def add(self, key: str, value: str, *, ttl: int) -> bool:
        async with self._lock:
            if self._live(key, self._clock()) is not None:
                return False
            self._write(key, value, ttl)
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._forget(key)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()
            self._access_order.clear()

    def size(self) -> int:
        return len(self._data)


class RedisStore(KeyValueStore):
    name = "redis"

    def __init__(self, client: "redis.Redis") -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.from_url(url, encoding="utf-8", decode_responses=True))

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str, *, ttl: int) -> None:
        await self._client.set(key, value, ex=ttl)

    async def add(self, key: str, value: str, *, ttl: int) -> bool:
        return bool(await self._client.set(key, value, ex=ttl, nx=True))

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    async def close(self) -> None:
        await self._client.aclose()


def create_store(config: Settings) -> KeyValueStore:
    if config.redis_url:
        logger.info("Using Redis key/value store")
        return RedisStore.from_url(config.redis_url)
    logger.info("Using in-process memory store (max_size=%d)", config.memory_store_max_size)
    return MemoryStore(max_size=config.memory_store_max_size)


__all__ = ["KeyValueStore", "MemoryStore", "RedisStore", "create_store"]

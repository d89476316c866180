"""Cache entry store: JSON envelopes over the shared key/value store."""

from __future__ import annotations

import logging
from typing import Optional

from pydantic import ValidationError

from ..cache import KeyValueStore
from ..errors import CacheCorrupt
from ..types import CacheEntry, ENVELOPE_VERSION

logger = logging.getLogger(__name__)


def encode_entry(entry: CacheEntry) -> str:
    return entry.model_dump_json(by_alias=True)


def decode_entry(raw: str) -> CacheEntry:
    try:
        entry = CacheEntry.model_validate_json(raw)
    except (ValidationError, ValueError) as exc:
        raise CacheCorrupt(f"undecodable cache entry: {exc.__class__.__name__}") from exc
    if entry.version != ENVELOPE_VERSION:
        raise CacheCorrupt(f"unsupported envelope version {entry.version}")
    return entry


class EntryStore:
    def __init__(self, store: KeyValueStore, *, ttl_seconds: int = 172800) -> None:
        self._store = store
        self._ttl = ttl_seconds

    @property
    def backend(self) -> str:
        return self._store.name

    async def get(self, key: str) -> Optional[CacheEntry]:
        """Return the entry, or None when absent or corrupt."""
        raw = await self._store.get(key)
        if not raw:
            return None
        try:
            return decode_entry(raw)
        except CacheCorrupt as exc:
            logger.warning("Ignoring corrupt cache entry %s: %s", key, exc.message)
            return None

    async def put(self, key: str, entry: CacheEntry, *, ttl: Optional[int] = None) -> None:
        await self._store.set(key, encode_entry(entry), ttl=ttl or self._ttl)


__all__ = ["EntryStore", "encode_entry", "decode_entry"]

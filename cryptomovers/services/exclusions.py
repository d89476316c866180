"""
Exclusion lists

Externally maintained block-lists (stablecoins, wrapped tokens, reward tokens)
are JSON arrays of symbols. Each source is optional: a missing or malformed
list contributes nothing. The set is rebuilt on every refresh.
"""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, FrozenSet, Iterable, List, Optional, Sequence

from ..providers.client import UpstreamClient

logger = logging.getLogger(__name__)


class ExclusionSet:
    """Case-insensitive set of excluded symbols."""

    def __init__(self, symbols: Iterable[str] = ()):
        self._symbols: FrozenSet[str] = frozenset(s.strip().lower() for s in symbols if s and s.strip())

    def __contains__(self, symbol: object) -> bool:
        if not isinstance(symbol, str):
            return False
        return symbol.strip().lower() in self._symbols

    def __len__(self) -> int:
        return len(self._symbols)

    @property
    def symbols(self) -> FrozenSet[str]:
        return self._symbols


def _symbols_from(payload: Any) -> List[str]:
    if not isinstance(payload, list):
        raise ValueError(f"expected a JSON array, got {type(payload).__name__}")
    return [item for item in payload if isinstance(item, str)]


class ExclusionLoader:
    """Loads every configured list concurrently."""

    def __init__(self, sources: Sequence[str], client: Optional[UpstreamClient] = None):
        self._sources = list(sources)
        self._client = client

    async def load(self) -> ExclusionSet:
        results = await asyncio.gather(*(self._load_one(source) for source in self._sources))
        symbols: List[str] = []
        for chunk in results:
            symbols.extend(chunk)
        exclusions = ExclusionSet(symbols)
        logger.debug("Loaded %d excluded symbols from %d sources", len(exclusions), len(self._sources))
        return exclusions

    async def _load_one(self, source: str) -> List[str]:
        try:
            if source.startswith(("http://", "https://")):
                payload = await self._fetch_remote(source)
            else:
                payload = await asyncio.to_thread(self._read_local, source)
            return _symbols_from(payload)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Skipping exclusion list %s: %s", source, exc)
            return []

    async def _fetch_remote(self, url: str) -> Any:
        if self._client is None:
            raise ValueError("no HTTP client configured for remote exclusion lists")
        response = await self._client.get_json(url)
        return response.unwrap(provider="exclusions")

    @staticmethod
    def _read_local(path: str) -> Any:
        return json.loads(Path(path).read_text(encoding="utf-8"))


__all__ = ["ExclusionSet", "ExclusionLoader"]

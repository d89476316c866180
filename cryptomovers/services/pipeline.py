"""
Fetch pipeline

Turns one upstream source into a ranked gainers/losers result:

1. load the exclusion set
2. collect raw records (sequential pagination or parallel partitions)
3. normalize, drop records missing required fields
4. apply exclusions and numeric sanity filters
5. side-load auxiliary metadata (non-fatal)
6. rank and truncate to top-N

Partial upstream coverage is absorbed and surfaced through ``is_partial``;
only a collection that yields no raw records at all is fatal.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, TypeVar

from pydantic import ValidationError

from ..clock import Clock, now_ms
from ..errors import UpstreamError, UpstreamFatal, UpstreamRateLimited, UpstreamTransientError
from ..providers.base import Coverage, MarketSource, PageResult
from ..types import MarketItem, RankedResult
from .exclusions import ExclusionLoader
from .ranking import rank_movers

logger = logging.getLogger(__name__)

P = TypeVar("P")

FetchPage = Callable[[int, Optional[str]], Awaitable[PageResult]]
Sleep = Callable[[float], Awaitable[None]]

DEFAULT_ATTEMPTS = 2


async def _fetch_with_retry(
    fetch_page: FetchPage,
    page: int,
    cursor: Optional[str],
    *,
    attempts: int,
    backoff_seconds: float,
    sleep: Sleep,
) -> PageResult:
    for attempt in range(1, attempts + 1):
        try:
            return await fetch_page(page, cursor)
        except UpstreamTransientError:
            if attempt >= attempts:
                raise
            await sleep(attempt * backoff_seconds)
    raise UpstreamTransientError(f"page {page}: no attempts made")


async def paginate(
    fetch_page: FetchPage,
    *,
    pages: int,
    attempts: int = DEFAULT_ATTEMPTS,
    backoff_seconds: float = 2.0,
    page_delay_seconds: float = 0.0,
    provider: Optional[str] = None,
    sleep: Sleep = asyncio.sleep,
) -> Coverage:
    """Fetch pages 1..``pages`` in order.

    A 429 stops pagination and marks the result partial. Transient errors are
    retried with a linear backoff; when retries run out the first page is
    fatal and later pages truncate pagination. An empty page or a page that
    reports no continuation ends pagination normally.
    """
    coverage = Coverage(units_requested=pages)
    cursor: Optional[str] = None

    for page in range(1, pages + 1):
        try:
            result = await _fetch_with_retry(
                fetch_page,
                page,
                cursor,
                attempts=attempts,
                backoff_seconds=backoff_seconds,
                sleep=sleep,
            )
        except UpstreamRateLimited:
            if page == 1:
                raise
            logger.warning("%s rate limited on page %d of %d; keeping partial result", provider, page, pages)
            coverage.is_partial = True
            coverage.units_failed = pages - page + 1
            break
        except UpstreamTransientError as exc:
            if page == 1:
                raise UpstreamFatal(f"{provider or 'upstream'} first page failed: {exc.message}", provider=provider) from exc
            logger.warning("%s page %d failed after %d attempts; truncating", provider, page, attempts)
            coverage.is_partial = True
            coverage.units_failed = pages - page + 1
            break

        coverage.records.extend(result.records)
        if not result.records or not result.has_more:
            break
        cursor = result.cursor
        if page < pages and page_delay_seconds > 0:
            await sleep(page_delay_seconds)

    return coverage


async def gather_partitions(
    partitions: Sequence[P],
    fetch_partition: Callable[[P], Awaitable[List[Any]]],
    *,
    provider: Optional[str] = None,
) -> Coverage:
    """Fetch every partition concurrently; a failing partition contributes nothing."""

    async def _guarded(partition: P) -> Optional[List[Any]]:
        try:
            return list(await fetch_partition(partition))
        except Exception as exc:  # noqa: BLE001
            logger.warning("%s partition %s failed: %s", provider, partition, exc)
            return None

    results = await asyncio.gather(*(_guarded(partition) for partition in partitions))
    coverage = Coverage(units_requested=len(partitions))
    for chunk in results:
        if chunk is None:
            coverage.units_failed += 1
            continue
        coverage.records.extend(chunk)

    if not coverage.records:
        raise UpstreamFatal(
            f"{provider or 'upstream'}: all {len(partitions)} partitions returned no data",
            provider=provider,
        )
    coverage.is_partial = coverage.units_failed > 0
    return coverage


class FetchPipeline:
    """Runs one ``MarketSource`` end to end."""

    def __init__(
        self,
        source: MarketSource,
        exclusions: ExclusionLoader,
        *,
        top_n: int,
        clock: Clock = now_ms,
    ) -> None:
        self.source = source
        self._exclusions = exclusions
        self._top_n = top_n
        self._clock = clock

    async def run(self, *, deep: bool = True) -> RankedResult:
        exclusion_set = await self._exclusions.load()
        coverage = await self.source.collect(deep=deep)
        if not coverage.records:
            raise UpstreamFatal(f"{self.source.name} returned no records", provider=self.source.name)

        items: List[MarketItem] = []
        malformed = 0
        for record in coverage.records:
            try:
                item = self.source.normalize(record)
            except (ValidationError, TypeError, AttributeError, ValueError) as exc:
                logger.debug("%s: unreadable record skipped: %s", self.source.name, exc)
                item = None
            if item is None:
                malformed += 1
                continue
            if item.symbol in exclusion_set:
                continue
            if not self.source.accept(item):
                continue
            items.append(item)

        if malformed:
            logger.debug("%s: dropped %d malformed records", self.source.name, malformed)

        items = self.source.refine(items)
        items = await self._enrich(items)
        gainers, losers = rank_movers(items, self._top_n)

        if coverage.is_partial:
            logger.warning(
                "%s: partial coverage (%d of %d units failed)",
                self.source.name,
                coverage.units_failed,
                coverage.units_requested,
            )
        return RankedResult(
            timestamp=self._clock(),
            gainers=gainers,
            losers=losers,
            is_partial=coverage.is_partial,
        )

    async def _enrich(self, items: List[MarketItem]) -> List[MarketItem]:
        try:
            return await self.source.enrich(items)
        except UpstreamError as exc:
            logger.warning("%s: metadata side-load failed: %s", self.source.name, exc)
            return items
        except Exception:  # noqa: BLE001
            logger.warning("%s: metadata side-load raised; keeping items as-is", self.source.name, exc_info=True)
            return items


__all__ = ["paginate", "gather_partitions", "FetchPipeline"]

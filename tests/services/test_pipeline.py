"""
Tests for pagination, partitioned fetching and the fetch pipeline.
"""

import json
from typing import Any, List, Optional
from unittest.mock import AsyncMock

import pytest

from cryptomovers.errors import UpstreamError, UpstreamFatal, UpstreamRateLimited, UpstreamTransientError
from cryptomovers.providers.base import Coverage, MarketSource, PageResult
from cryptomovers.services.exclusions import ExclusionLoader
from cryptomovers.services.pipeline import FetchPipeline, gather_partitions, paginate
from cryptomovers.types import MarketItem
from movers_testing import FrozenClock, make_item


def page_of(page: int, size: int = 2) -> PageResult:
    return PageResult(records=[f"p{page}-{i}" for i in range(size)], has_more=True)


# =============================================================================
# paginate
# =============================================================================


@pytest.mark.asyncio
async def test_rate_limit_on_second_page_keeps_first_page():
    async def fetch_page(page: int, cursor: Optional[str]) -> PageResult:
        if page == 2:
            raise UpstreamRateLimited(provider="test")
        return page_of(page)

    coverage = await paginate(fetch_page, pages=3, sleep=AsyncMock())

    assert coverage.is_partial is True
    assert coverage.records == ["p1-0", "p1-1"]
    assert coverage.units_failed == 2


@pytest.mark.asyncio
async def test_rate_limit_on_first_page_raises():
    fetch_page = AsyncMock(side_effect=UpstreamRateLimited(provider="test"))

    with pytest.raises(UpstreamRateLimited):
        await paginate(fetch_page, pages=3, sleep=AsyncMock())


@pytest.mark.asyncio
async def test_first_page_transient_failure_is_fatal_after_retries():
    fetch_page = AsyncMock(side_effect=UpstreamTransientError("boom"))
    sleep = AsyncMock()

    with pytest.raises(UpstreamFatal):
        await paginate(fetch_page, pages=3, attempts=2, backoff_seconds=2.0, sleep=sleep)

    assert fetch_page.await_count == 2
    sleep.assert_awaited_once_with(2.0)


@pytest.mark.asyncio
async def test_transient_failure_is_retried_then_succeeds():
    fetch_page = AsyncMock(side_effect=[page_of(1), UpstreamTransientError("blip"), page_of(2)])

    coverage = await paginate(fetch_page, pages=2, sleep=AsyncMock())

    assert coverage.is_partial is False
    assert len(coverage.records) == 4


@pytest.mark.asyncio
async def test_later_page_failure_truncates():
    fetch_page = AsyncMock(side_effect=[page_of(1), UpstreamTransientError("a"), UpstreamTransientError("b")])

    coverage = await paginate(fetch_page, pages=3, attempts=2, sleep=AsyncMock())

    assert coverage.is_partial is True
    assert coverage.records == ["p1-0", "p1-1"]


@pytest.mark.asyncio
async def test_short_page_ends_pagination_without_partial():
    fetch_page = AsyncMock(side_effect=[page_of(1), PageResult(records=["last"], has_more=False)])

    coverage = await paginate(fetch_page, pages=6, sleep=AsyncMock())

    assert fetch_page.await_count == 2
    assert coverage.is_partial is False
    assert coverage.records[-1] == "last"


@pytest.mark.asyncio
async def test_cursor_and_page_delay_are_forwarded():
    seen: List[Any] = []

    async def fetch_page(page: int, cursor: Optional[str]) -> PageResult:
        seen.append(cursor)
        return PageResult(records=[page], has_more=True, cursor=f"after-{page}")

    sleep = AsyncMock()
    await paginate(fetch_page, pages=3, page_delay_seconds=2.0, sleep=sleep)

    assert seen == [None, "after-1", "after-2"]
    assert sleep.await_count == 2


# =============================================================================
# gather_partitions
# =============================================================================


@pytest.mark.asyncio
async def test_failing_partition_marks_partial():
    async def fetch_partition(network: str) -> List[str]:
        if network == "bsc":
            raise UpstreamTransientError("down")
        return [f"{network}-pool"]

    coverage = await gather_partitions(["solana", "bsc", "base"], fetch_partition)

    assert coverage.is_partial is True
    assert coverage.units_failed == 1
    assert coverage.records == ["solana-pool", "base-pool"]


@pytest.mark.asyncio
async def test_all_partitions_failing_is_fatal():
    fetch_partition = AsyncMock(side_effect=UpstreamTransientError("down"))

    with pytest.raises(UpstreamFatal):
        await gather_partitions(["solana", "eth"], fetch_partition, provider="geckoterminal")


@pytest.mark.asyncio
async def test_complete_partitions_are_not_partial():
    fetch_partition = AsyncMock(return_value=["pool"])

    coverage = await gather_partitions(["solana", "eth"], fetch_partition)

    assert coverage.is_partial is False
    assert coverage.units_requested == 2


# =============================================================================
# FetchPipeline
# =============================================================================


class StaticSource(MarketSource):
    name = "static"

    def __init__(self, items: List[MarketItem], *, is_partial: bool = False, enrich_error: Optional[Exception] = None):
        self.items = items
        self.is_partial = is_partial
        self.enrich_error = enrich_error
        self.deep_calls: List[bool] = []

    async def collect(self, *, deep: bool = True) -> Coverage:
        self.deep_calls.append(deep)
        return Coverage(records=list(self.items), is_partial=self.is_partial, units_requested=1)

    def normalize(self, record: Any) -> Optional[MarketItem]:
        if record.price <= 0:
            return None
        return record

    def accept(self, item: MarketItem) -> bool:
        return item.volume_24h >= 100

    async def enrich(self, items: List[MarketItem]) -> List[MarketItem]:
        if self.enrich_error is not None:
            raise self.enrich_error
        return [item.model_copy(update={"image": "icon.png"}) for item in items]


@pytest.fixture
def exclusions(tmp_path):
    path = tmp_path / "stablecoins.json"
    path.write_text(json.dumps(["usdt", "USDC"]))
    return ExclusionLoader([str(path)])


@pytest.mark.asyncio
async def test_pipeline_filters_and_ranks(exclusions):
    source = StaticSource([
        make_item("USDT", 0.1, volume_24h=1e9),
        make_item("PEPE", 40.0, volume_24h=5000),
        make_item("DUST", 90.0, volume_24h=10),
        make_item("BROKEN", 15.0, price=0.0, volume_24h=5000),
        make_item("DOGE", -12.0, volume_24h=5000),
        make_item("SOL", 3.0, volume_24h=5000),
    ])
    clock = FrozenClock()
    pipeline = FetchPipeline(source, exclusions, top_n=2, clock=clock)

    result = await pipeline.run(deep=False)

    assert result.timestamp == clock.now
    assert [item.symbol for item in result.gainers] == ["PEPE", "SOL"]
    assert [item.symbol for item in result.losers] == ["DOGE"]
    assert all(item.image == "icon.png" for item in result.gainers)
    assert result.is_partial is False
    assert source.deep_calls == [False]


@pytest.mark.asyncio
async def test_pipeline_surfaces_partial_coverage(exclusions):
    source = StaticSource([make_item("PEPE", 4.0, volume_24h=5000)], is_partial=True)

    result = await FetchPipeline(source, exclusions, top_n=5).run()

    assert result.is_partial is True


@pytest.mark.asyncio
async def test_pipeline_without_records_is_fatal(exclusions):
    with pytest.raises(UpstreamFatal):
        await FetchPipeline(StaticSource([]), exclusions, top_n=5).run()


@pytest.mark.asyncio
async def test_enrich_failure_is_not_fatal(exclusions):
    source = StaticSource([make_item("PEPE", 4.0, volume_24h=5000)], enrich_error=UpstreamError("metadata down"))

    result = await FetchPipeline(source, exclusions, top_n=5).run()

    assert [item.symbol for item in result.gainers] == ["PEPE"]
    assert result.gainers[0].image is None


class DriftingSource(StaticSource):
    """Builds items from raw dicts the way the providers do."""

    def normalize(self, record: Any) -> Optional[MarketItem]:
        return MarketItem(
            id=record["id"],
            symbol=record["symbol"].upper(),
            price=float(record["price"]),
            change_24h=record["change"],
            volume_24h=5000,
            source="drift",
        )


@pytest.mark.asyncio
async def test_unreadable_records_are_dropped_not_fatal(exclusions):
    source = DriftingSource([
        {"id": "pepe", "symbol": "pepe", "price": "1.0", "change": 9.0},
        {"id": {"nested": True}, "symbol": "bad", "price": "1.0", "change": 5.0},
        {"id": "num", "symbol": 7, "price": "1.0", "change": 5.0},
        {"id": "nan", "symbol": "nan", "price": "n/a", "change": 5.0},
        "not-a-record",
        {"id": "doge", "symbol": "doge", "price": "1.0", "change": -3.0},
    ])

    result = await FetchPipeline(source, exclusions, top_n=1).run()

    assert [item.symbol for item in result.gainers] == ["PEPE"]
    assert [item.symbol for item in result.losers] == ["DOGE"]


@pytest.mark.asyncio
async def test_unexpected_enrich_error_keeps_items(exclusions):
    source = StaticSource([make_item("PEPE", 4.0, volume_24h=5000)], enrich_error=AttributeError("values"))

    result = await FetchPipeline(source, exclusions, top_n=5).run()

    assert [item.symbol for item in result.gainers] == ["PEPE"]

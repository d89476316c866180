from unittest.mock import AsyncMock, MagicMock

import pytest

from cryptomovers.services.leases import AdvisoryLease
from movers_testing import T0


@pytest.mark.asyncio
async def test_acquire_writes_timestamped_marker(memory_store):
    lease = AdvisoryLease(memory_store)

    assert await lease.acquire("market_data", T0) is True

    assert await memory_store.get("market_data_lock") == str(T0)
    assert await lease.acquired_at("market_data") == T0
    assert await lease.is_held("market_data", T0 + 1000, timeout_ms=120_000) is True
    assert await lease.is_held("market_data", T0 + 120_000, timeout_ms=120_000) is False


@pytest.mark.asyncio
async def test_advisory_acquire_overwrites_existing_marker(memory_store):
    lease = AdvisoryLease(memory_store)
    await lease.acquire("dex_data:solana", T0)

    assert await lease.acquire("dex_data:solana", T0 + 5) is True
    assert await lease.acquired_at("dex_data:solana") == T0 + 5


@pytest.mark.asyncio
async def test_strict_acquire_is_exclusive_until_release(memory_store):
    lease = AdvisoryLease(memory_store, strict=True)

    assert await lease.acquire("market_data", T0) is True
    assert await lease.acquire("market_data", T0 + 1) is False

    await lease.release("market_data")
    assert await lease.acquire("market_data", T0 + 2) is True


@pytest.mark.asyncio
async def test_store_failures_degrade_gracefully():
    store = MagicMock()
    store.get = AsyncMock(side_effect=ConnectionError("redis down"))
    store.set = AsyncMock(side_effect=ConnectionError("redis down"))
    store.add = AsyncMock(side_effect=ConnectionError("redis down"))
    store.delete = AsyncMock(side_effect=ConnectionError("redis down"))

    for strict in (False, True):
        lease = AdvisoryLease(store, strict=strict)
        assert await lease.acquire("market_data", T0) is True
        assert await lease.is_held("market_data", T0, timeout_ms=1000) is False
        await lease.release("market_data")


@pytest.mark.asyncio
async def test_unparseable_marker_is_not_held(memory_store):
    await memory_store.set("market_data_lock", "garbage", ttl=60)

    assert await AdvisoryLease(memory_store).acquired_at("market_data") is None

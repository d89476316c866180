"""
End-to-end tests for the movers endpoints through the FastAPI app.
"""

import asyncio
from typing import List

import httpx
import pytest
from fastapi.testclient import TestClient

from cryptomovers.cache import MemoryStore
from cryptomovers.config import Settings
from cryptomovers.main import create_app
from cryptomovers.services.datasets import DatasetRegistry
from cryptomovers.services.entries import EntryStore, encode_entry
from movers_testing import MINUTE_MS, FrozenClock, make_entry


def coin(coin_id: str, change: float) -> dict:
    return {
        "id": coin_id,
        "symbol": coin_id[:3],
        "name": coin_id.title(),
        "image": None,
        "current_price": 2.0,
        "price_change_percentage_24h": change,
        "total_volume": 10_000,
        "market_cap": 1_000_000,
    }


class Upstream:
    """Scripted upstream answering Coingecko and GeckoTerminal requests."""

    def __init__(self, *, pools_status: int = 200):
        self.pools_status = pools_status
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/coins/markets"):
            page = int(request.url.params["page"])
            if page == 1:
                return httpx.Response(200, json=[coin("bitcoin", 3.0), coin("dogecoin", -7.5)])
            return httpx.Response(200, json=[coin("pepe", 41.0)])
        if "/networks/" in request.url.path:
            return httpx.Response(self.pools_status, json={"data": [], "included": []})
        return httpx.Response(404)


def build_settings(**overrides) -> Settings:
    options = dict(
        redis_url="",
        cmc_pro_api_key="",
        exclusion_sources=[],
        dex_networks=["solana", "eth"],
        cex_page_size=2,
        cex_deep_scan_pages=2,
        cex_page_delay_seconds=0,
        cex_retry_backoff_seconds=0,
    )
    options.update(overrides)
    return Settings(**options)


def build_client(upstream: Upstream, *, store=None, clock=None, **overrides):
    registry = DatasetRegistry(
        build_settings(**overrides),
        store=store or MemoryStore(),
        transport=httpx.MockTransport(upstream),
        clock=clock or FrozenClock(),
    )
    return TestClient(create_app(registry)), registry


def test_cold_start_is_a_live_fetch():
    upstream = Upstream()
    clock = FrozenClock()
    client, registry = build_client(upstream, clock=clock)

    with client:
        response = client.get("/api/stats")

    stored = asyncio.run(registry.entries.get("market_data"))
    assert response.status_code == 200
    assert response.headers["x-source"] == "Live-Fetch"
    assert response.headers["cache-control"] == "no-store, no-cache, must-revalidate, proxy-revalidate"
    assert response.headers["pragma"] == "no-cache"
    assert response.headers["access-control-allow-origin"] == "*"
    body = response.json()
    assert body["timestamp"] == clock.now
    assert [item["symbol"] for item in body["gainers"]] == ["bit", "dog"]
    assert body["gainers"][0]["change24h"] == 3.0
    assert body["isPartial"] is False
    assert body["lastUpdateFailed"] is False
    assert "network" not in body
    assert stored.timestamp == stored.last_update_attempt == clock.now
    assert [request.url.params["page"] for request in upstream.requests] == ["1"]


def test_fresh_then_proactive_refresh():
    upstream = Upstream()
    clock = FrozenClock()
    client, _ = build_client(upstream, clock=clock)

    with client:
        first = client.get("/api/stats")
        fresh = client.get("/api/stats")
        calls_after_fresh = len(upstream.requests)
        clock.advance(12 * MINUTE_MS + 1)
        stale = client.get("/api/stats")

    assert first.headers["x-source"] == "Live-Fetch"
    assert fresh.headers["x-source"] == "Cache-Fresh"
    assert calls_after_fresh == 1
    assert stale.headers["x-source"] == "Cache-Proactive"
    assert stale.json() == first.json()
    # Deep scan ran in the background and was drained at shutdown
    assert [request.url.params["page"] for request in upstream.requests[1:]] == ["1", "2"]


def test_all_partitions_failing_without_cache_is_an_error():
    client, _ = build_client(Upstream(pools_status=500))

    with client:
        response = client.get("/api/stats", params={"network": "all"})

    assert response.status_code == 502
    assert response.json()["error"] is True
    assert "Traceback" not in response.text
    assert response.headers["cache-control"].startswith("no-store")


def test_all_partitions_failing_serves_previous_entry():
    clock = FrozenClock()
    store = MemoryStore()
    previous = make_entry(clock.now - 3 * 60 * MINUTE_MS, tag="OLD")
    asyncio.run(store.set("dex_data:solana", encode_entry(previous), ttl=3600))
    client, _ = build_client(Upstream(pools_status=500), store=store, clock=clock, dex_hard_expiry_seconds=3600)

    with client:
        response = client.get("/api/stats", params={"network": "solana"})

    stored = asyncio.run(EntryStore(store).get("dex_data:solana"))
    assert response.status_code == 200
    assert response.headers["x-source"] == "Cache-Fallback-Error"
    body = response.json()
    assert body["network"] == "solana"
    assert body["gainers"][0]["symbol"] == "OLDUP"
    assert body["lastUpdateFailed"] is True
    assert stored.last_update_failed is True
    assert stored.last_update_attempt == clock.now


def test_unknown_network_is_not_found():
    client, _ = build_client(Upstream())

    with client:
        response = client.get("/api/stats", params={"network": "dogechain"})

    assert response.status_code == 404
    assert response.json() == {"error": True, "message": "Unknown network 'dogechain'. Supported: solana, eth, all"}


def test_dex_pairs_require_an_api_key():
    client, _ = build_client(Upstream())

    with client:
        response = client.get("/api/dex-stats", params={"network": "solana"})

    assert response.status_code == 503
    assert response.json()["error"] is True


def test_health_reports_each_dataset():
    client, _ = build_client(Upstream())

    with client:
        client.get("/api/stats")
        response = client.get("/healthz")

    assert response.status_code == 200
    body = response.json()
    assert body["store"] == "memory"
    assert body["datasets"]["market_data"]["cached"] is True
    assert body["datasets"]["dex_data:solana"]["cached"] is False
    assert "dex_pairs:solana" not in body["datasets"]
    assert body["total_datasets"] == 4


def test_root_lists_endpoints():
    client, _ = build_client(Upstream())

    with client:
        response = client.get("/")

    assert response.status_code == 200
    assert response.json()["health"] == "/healthz"

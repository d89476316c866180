"""
Dataset registry

Wires one ``DatasetRefresher`` per cache key from settings. All refreshers
share the upstream client, the key/value store, the lease helper and the
background task registry.

| key                    | source                     | endpoint                     |
|------------------------|----------------------------|------------------------------|
| ``market_data``        | Coingecko markets          | ``/api/stats``               |
| ``dex_data:<network>`` | GeckoTerminal pools        | ``/api/stats?network=``      |
| ``dex_pairs:<network>``| CoinMarketCap spot pairs   | ``/api/dex-stats?network=``  |
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

import httpx

from ..cache import KeyValueStore, create_store
from ..clock import Clock, now_ms
from ..config import Settings
from ..errors import DatasetUnavailable
from ..providers.client import UpstreamClient
from ..providers.coingecko import CoingeckoMarkets
from ..providers.coinmarketcap import CoinMarketCapDexPairs
from ..providers.geckoterminal import GeckoTerminalPools
from .entries import EntryStore
from .exclusions import ExclusionLoader
from .freshness import DatasetRefresher, RefreshPolicy
from .leases import AdvisoryLease
from .pipeline import FetchPipeline
from .tasks import RefreshTaskRegistry

logger = logging.getLogger(__name__)

CEX_KEY = "market_data"
ALL_NETWORKS = "all"


def dex_pools_key(network: str) -> str:
    return f"dex_data:{network}"


def dex_pairs_key(network: str) -> str:
    return f"dex_pairs:{network}"


def policy_for(config: Settings, prefix: str) -> RefreshPolicy:
    """Build the refresh policy from the ``<prefix>_*`` settings group."""
    return RefreshPolicy(
        soft_refresh_seconds=getattr(config, f"{prefix}_soft_refresh_seconds"),
        retry_delay_seconds=getattr(config, f"{prefix}_retry_delay_seconds"),
        lease_timeout_seconds=getattr(config, f"{prefix}_lease_timeout_seconds"),
        cold_start_timeout_seconds=getattr(config, f"{prefix}_cold_start_timeout_seconds"),
        hard_expiry_seconds=getattr(config, f"{prefix}_hard_expiry_seconds"),
    )


class DatasetRegistry:
    def __init__(
        self,
        config: Settings,
        *,
        store: Optional[KeyValueStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Clock = now_ms,
        tasks: Optional[RefreshTaskRegistry] = None,
    ) -> None:
        self.config = config
        self.store = store if store is not None else create_store(config)
        self.client = UpstreamClient(
            timeout_s=config.upstream_timeout_seconds,
            headers={"User-Agent": config.user_agent},
            transport=transport,
        )
        self.entries = EntryStore(self.store, ttl_seconds=config.entry_ttl_seconds)
        self.leases = AdvisoryLease(
            self.store,
            ttl_seconds=config.lease_ttl_seconds,
            strict=config.lease_mode == "strict",
        )
        self.exclusions = ExclusionLoader(config.exclusion_sources, client=self.client)
        self.tasks = tasks if tasks is not None else RefreshTaskRegistry()
        self._clock = clock
        self._refreshers: Dict[str, DatasetRefresher] = {}

    @property
    def networks(self) -> List[str]:
        return [network.lower() for network in self.config.dex_networks]

    def _resolve_network(self, network: str) -> str:
        network = (network or "").strip().lower()
        if network != ALL_NETWORKS and network not in self.networks:
            supported = ", ".join([*self.networks, ALL_NETWORKS])
            raise DatasetUnavailable(f"Unknown network '{network}'. Supported: {supported}", status_code=404)
        return network

    def _networks_for(self, network: str) -> List[str]:
        return self.networks if network == ALL_NETWORKS else [network]

    def _register(self, key: str, pipeline: FetchPipeline, policy: RefreshPolicy) -> DatasetRefresher:
        refresher = DatasetRefresher(
            key,
            pipeline,
            entries=self.entries,
            leases=self.leases,
            policy=policy,
            tasks=self.tasks,
            clock=self._clock,
        )
        self._refreshers[key] = refresher
        logger.debug("Registered dataset %s", key)
        return refresher

    def cex(self) -> DatasetRefresher:
        if CEX_KEY in self._refreshers:
            return self._refreshers[CEX_KEY]
        config = self.config
        source = CoingeckoMarkets(
            self.client,
            base_url=config.coingecko_base_url,
            api_key=config.coingecko_api_key,
            page_size=config.cex_page_size,
            quick_scan_pages=config.cex_quick_scan_pages,
            deep_scan_pages=config.cex_deep_scan_pages,
            page_delay_seconds=config.cex_page_delay_seconds,
            retry_backoff_seconds=config.cex_retry_backoff_seconds,
        )
        pipeline = FetchPipeline(source, self.exclusions, top_n=config.cex_top_n, clock=self._clock)
        return self._register(CEX_KEY, pipeline, policy_for(config, "cex"))

    def dex_pools(self, network: str) -> DatasetRefresher:
        network = self._resolve_network(network)
        key = dex_pools_key(network)
        if key in self._refreshers:
            return self._refreshers[key]
        config = self.config
        source = GeckoTerminalPools(
            self.client,
            self._networks_for(network),
            base_url=config.geckoterminal_base_url,
            pages_per_network=config.dex_pages_per_network,
            min_liquidity_usd=config.dex_min_liquidity_usd,
            min_volume_usd=config.dex_min_volume_usd,
            max_fdv_to_liquidity=config.dex_max_fdv_to_liquidity,
        )
        top_n = config.dex_all_top_n if network == ALL_NETWORKS else config.dex_top_n
        pipeline = FetchPipeline(source, self.exclusions, top_n=top_n, clock=self._clock)
        return self._register(key, pipeline, policy_for(config, "dex"))

    def dex_pairs(self, network: str) -> DatasetRefresher:
        config = self.config
        if not config.has_cmc_key:
            raise DatasetUnavailable("DEX pair stats are not configured", status_code=503)
        network = self._resolve_network(network)
        key = dex_pairs_key(network)
        if key in self._refreshers:
            return self._refreshers[key]
        source = CoinMarketCapDexPairs(
            self.client,
            self._networks_for(network),
            api_key=config.cmc_pro_api_key,
            base_url=config.coinmarketcap_base_url,
            pages=config.cmc_pages,
            page_size=config.cmc_page_size,
            min_liquidity_usd=config.cmc_min_liquidity_usd,
            metadata_limit=config.cmc_metadata_limit,
            placeholder_icon=config.placeholder_icon_url,
            retry_backoff_seconds=config.cex_retry_backoff_seconds,
        )
        pipeline = FetchPipeline(source, self.exclusions, top_n=config.cmc_top_n, clock=self._clock)
        return self._register(key, pipeline, policy_for(config, "cmc"))

    def configured(self) -> List[DatasetRefresher]:
        """Every dataset the current settings can serve."""
        refreshers = [self.cex()]
        refreshers.extend(self.dex_pools(network) for network in [*self.networks, ALL_NETWORKS])
        if self.config.has_cmc_key:
            refreshers.extend(self.dex_pairs(network) for network in [*self.networks, ALL_NETWORKS])
        return refreshers

    async def aclose(self, drain_timeout: Optional[float] = 10.0) -> None:
        await self.tasks.drain(timeout=drain_timeout)
        await self.client.close()
        await self.store.close()


__all__ = [
    "CEX_KEY",
    "ALL_NETWORKS",
    "DatasetRegistry",
    "dex_pairs_key",
    "dex_pools_key",
    "policy_for",
]

"""GeckoTerminal pools, fetched per network in parallel."""

from typing import Any, Dict, List, Optional, Sequence, Tuple

from .base import Coverage, MarketSource, as_dict, to_float, to_str
from .client import UpstreamClient
from ..services.pipeline import gather_partitions
from ..types import MarketItem

# network id -> GeckoTerminal network slug
NETWORK_SLUGS: Dict[str, str] = {
    "solana": "solana",
    "eth": "eth",
    "bsc": "bsc",
    "base": "base",
}

Partition = Tuple[str, int]


def _base_symbol(pool_name: str) -> str:
    # "PEPE / SOL" -> "PEPE"
    return pool_name.split("/")[0].strip()


class GeckoTerminalPools(MarketSource):
    name = "geckoterminal"

    def __init__(
        self,
        client: UpstreamClient,
        networks: Sequence[str],
        *,
        base_url: str = "https://api.geckoterminal.com/api/v2",
        pages_per_network: int = 2,
        min_liquidity_usd: float = 5000.0,
        min_volume_usd: float = 1000.0,
        max_fdv_to_liquidity: Optional[float] = None,
    ):
        self.client = client
        self.networks = list(networks)
        self.base_url = base_url.rstrip("/")
        self.pages_per_network = pages_per_network
        self.min_liquidity_usd = min_liquidity_usd
        self.min_volume_usd = min_volume_usd
        self.max_fdv_to_liquidity = max_fdv_to_liquidity

    def partitions(self) -> List[Partition]:
        return [
            (network, page)
            for network in self.networks
            for page in range(1, self.pages_per_network + 1)
        ]

    async def fetch_partition(self, partition: Partition) -> List[Dict[str, Any]]:
        network, page = partition
        slug = NETWORK_SLUGS.get(network, network)
        response = await self.client.get_json(
            f"{self.base_url}/networks/{slug}/pools",
            params={"page": page, "include": "base_token", "sort": "h24_volume_usd_desc"},
        )
        payload = response.unwrap(provider=self.name)
        if not isinstance(payload, dict):
            payload = {}
        pools = payload.get("data")
        included = payload.get("included")
        if not isinstance(pools, list):
            pools = []
        if not isinstance(included, list):
            included = []
        tokens = {
            inc["id"]: as_dict(inc.get("attributes"))
            for inc in included
            if isinstance(inc, dict) and inc.get("type") == "token" and isinstance(inc.get("id"), str)
        }

        records: List[Dict[str, Any]] = []
        for pool in pools:
            if not isinstance(pool, dict):
                continue
            token_ref = as_dict(as_dict(as_dict(pool.get("relationships")).get("base_token")).get("data"))
            records.append({
                "network": network,
                "pool": pool,
                "token": tokens.get(to_str(token_ref.get("id")), {}),
            })
        return records

    async def collect(self, *, deep: bool = True) -> Coverage:
        return await gather_partitions(self.partitions(), self.fetch_partition, provider=self.name)

    def normalize(self, record: Dict[str, Any]) -> Optional[MarketItem]:
        pool = as_dict(record.get("pool"))
        token = as_dict(record.get("token"))
        attrs = as_dict(pool.get("attributes"))
        network = to_str(record.get("network"))

        pool_name = to_str(attrs.get("name")) or ""
        symbol = (to_str(token.get("symbol")) or _base_symbol(pool_name)).strip().upper()
        price = to_float(attrs.get("base_token_price_usd"))
        changes = as_dict(attrs.get("price_change_percentage"))
        change_24h = to_float(changes.get("h24"))
        if not symbol or price is None or change_24h is None:
            return None

        address = to_str(attrs.get("address"))
        return MarketItem(
            id=to_str(pool.get("id")) or address or symbol,
            symbol=symbol,
            name=to_str(token.get("name")) or _base_symbol(pool_name),
            image=to_str(token.get("image_url")),
            price=price,
            change_24h=change_24h,
            change_30m=to_float(changes.get("m30")),
            change_1h=to_float(changes.get("h1")),
            change_6h=to_float(changes.get("h6")),
            volume_24h=to_float(as_dict(attrs.get("volume_usd")).get("h24"), 0.0),
            market_cap=to_float(attrs.get("fdv_usd")),
            liquidity=to_float(attrs.get("reserve_in_usd"), 0.0),
            network=network,
            address=address,
            url=f"https://www.geckoterminal.com/{NETWORK_SLUGS.get(network, network)}/pools/{address}" if address else None,
            source=self.name,
        )

    def accept(self, item: MarketItem) -> bool:
        liquidity = item.liquidity or 0.0
        if liquidity < self.min_liquidity_usd:
            return False
        if item.volume_24h < self.min_volume_usd:
            return False
        if item.change_24h == 0:
            return False
        if self.max_fdv_to_liquidity is not None and item.market_cap and liquidity > 0:
            if item.market_cap / liquidity > self.max_fdv_to_liquidity:
                return False
        return True

    def refine(self, items: List[MarketItem]) -> List[MarketItem]:
        # One pool per symbol: deepest pool within a network, busiest across networks
        per_network: Dict[Tuple[Optional[str], str], MarketItem] = {}
        for item in items:
            key = (item.network, item.symbol)
            existing = per_network.get(key)
            if existing is None or (item.liquidity or 0.0) > (existing.liquidity or 0.0):
                per_network[key] = item

        global_best: Dict[str, MarketItem] = {}
        for item in per_network.values():
            existing = global_best.get(item.symbol)
            if existing is None or item.volume_24h > existing.volume_24h:
                global_best[item.symbol] = item
        return list(global_best.values())

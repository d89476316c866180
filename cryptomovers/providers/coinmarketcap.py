"""CoinMarketCap DEX spot pairs with icon side-loading."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from .base import Coverage, MarketSource, PageResult, as_dict, to_float, to_str
from .client import UpstreamClient
from ..errors import UpstreamError
from ..services.pipeline import paginate
from ..types import MarketItem

logger = logging.getLogger(__name__)

# network id -> CoinMarketCap network slug
NETWORK_SLUGS: Dict[str, str] = {
    "solana": "solana",
    "eth": "ethereum",
    "bsc": "bsc",
    "base": "base",
}


def _first_quote(record: Dict[str, Any]) -> Dict[str, Any]:
    quotes = record.get("quote")
    if isinstance(quotes, list) and quotes and isinstance(quotes[0], dict):
        return quotes[0]
    if isinstance(quotes, dict):
        return quotes
    return {}


class CoinMarketCapDexPairs(MarketSource):
    """``/v4/dex/spot-pairs/latest`` sorted by 24h change, scroll-paginated."""

    name = "coinmarketcap"

    def __init__(
        self,
        client: UpstreamClient,
        networks: Sequence[str],
        *,
        api_key: str,
        base_url: str = "https://pro-api.coinmarketcap.com",
        pages: int = 3,
        page_size: int = 100,
        min_liquidity_usd: float = 10000.0,
        metadata_limit: int = 100,
        placeholder_icon: Optional[str] = None,
        retry_backoff_seconds: float = 2.0,
    ):
        self.client = client
        self.networks = list(networks)
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.pages = pages
        self.page_size = page_size
        self.min_liquidity_usd = min_liquidity_usd
        self.metadata_limit = metadata_limit
        self.placeholder_icon = placeholder_icon
        self.retry_backoff_seconds = retry_backoff_seconds

    def _build_headers(self) -> Dict[str, str]:
        return {"X-CMC_PRO_API_KEY": self.api_key}

    @property
    def network_slug(self) -> str:
        return ",".join(NETWORK_SLUGS.get(network, network) for network in self.networks)

    async def fetch_page(self, page: int, cursor: Optional[str] = None) -> PageResult:
        params: Dict[str, Any] = {
            "limit": self.page_size,
            "sort": "percent_change_24h",
            "sort_dir": "desc",
            "network_slug": self.network_slug,
            "liquidity_min": int(self.min_liquidity_usd),
        }
        if cursor:
            params["scroll_id"] = cursor

        response = await self.client.get_json(
            f"{self.base_url}/v4/dex/spot-pairs/latest",
            params=params,
            headers=self._build_headers(),
        )
        payload = response.unwrap(provider=self.name)
        if not isinstance(payload, dict):
            return PageResult(records=[], has_more=False)

        data = payload.get("data")
        pairs = [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []
        next_cursor = to_str(as_dict(payload.get("status")).get("scroll_id")) or to_str(payload.get("scroll_id"))
        return PageResult(records=pairs, has_more=bool(next_cursor), cursor=next_cursor)

    async def collect(self, *, deep: bool = True) -> Coverage:
        return await paginate(
            self.fetch_page,
            pages=self.pages,
            backoff_seconds=self.retry_backoff_seconds,
            provider=self.name,
        )

    def normalize(self, record: Dict[str, Any]) -> Optional[MarketItem]:
        quote = _first_quote(record)
        symbol = (to_str(record.get("base_asset_symbol")) or "").strip()
        price = to_float(record.get("price", quote.get("price")))
        change_24h = to_float(record.get("percent_change_24h", quote.get("percent_change_price_24h")))
        if not symbol or price is None or change_24h is None:
            return None

        platform = record.get("platform")
        platform_name = to_str(platform.get("name") if isinstance(platform, dict) else platform)
        base_id = record.get("base_asset_id")
        address = to_str(record.get("base_asset_contract_address"))
        if isinstance(base_id, bool) or not isinstance(base_id, (int, str)):
            base_id = None
        return MarketItem(
            id=str(base_id) if base_id is not None else address or symbol,
            symbol=symbol,
            name=to_str(record.get("base_asset_name")) or "",
            price=price,
            change_24h=change_24h,
            volume_24h=to_float(record.get("volume_24h", quote.get("volume_24h")), 0.0),
            liquidity=to_float(record.get("liquidity", quote.get("liquidity")), 0.0),
            market_cap=to_float(record.get("fully_diluted_value", quote.get("fully_diluted_value"))),
            network=platform_name or "Unknown",
            address=address,
            url=to_str(record.get("dex_url")),
            source=self.name,
        )

    def accept(self, item: MarketItem) -> bool:
        # liquidity_min is also sent upstream; re-checked in case it was ignored
        return (item.liquidity or 0.0) >= self.min_liquidity_usd

    async def enrich(self, items: List[MarketItem]) -> List[MarketItem]:
        asset_ids: List[str] = []
        for item in items[: self.metadata_limit]:
            if item.id.isdigit() and item.id not in asset_ids:
                asset_ids.append(item.id)

        logos: Dict[str, str] = {}
        if asset_ids:
            try:
                logos = await self.fetch_logos(asset_ids)
            except UpstreamError as exc:
                logger.warning("Metadata fetch failed: %s", exc)
            except Exception:  # noqa: BLE001
                logger.warning("Metadata response could not be read", exc_info=True)

        return [
            item.model_copy(update={"image": logos.get(item.id) or item.image or self.placeholder_icon})
            for item in items
        ]

    async def fetch_logos(self, asset_ids: Sequence[str]) -> Dict[str, str]:
        response = await self.client.get_json(
            f"{self.base_url}/v2/cryptocurrency/info",
            params={"id": ",".join(asset_ids)},
            headers=self._build_headers(),
        )
        payload = response.unwrap(provider=self.name)
        data = payload.get("data") if isinstance(payload, dict) else None
        if isinstance(data, list):
            data = {str(index): info for index, info in enumerate(data)}
        if not isinstance(data, dict):
            logger.warning("Metadata response carried no data object")
            return {}

        logos: Dict[str, str] = {}
        for info in data.values():
            entries = info if isinstance(info, list) else [info]
            for entry in entries:
                if not isinstance(entry, dict) or entry.get("id") is None:
                    continue
                logo = to_str(entry.get("logo"))
                if logo:
                    logos[str(entry["id"])] = logo
        return logos

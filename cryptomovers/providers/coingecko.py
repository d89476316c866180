from typing import Any, Dict, List, Optional

from .base import Coverage, MarketSource, PageResult, to_float, to_str
from .client import UpstreamClient
from ..services.pipeline import paginate
from ..types import MarketItem


class CoingeckoMarkets(MarketSource):
    """Coingecko ``/coins/markets`` listing ordered by market cap."""

    name = "coingecko"

    def __init__(
        self,
        client: UpstreamClient,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        api_key: str = "",
        page_size: int = 250,
        quick_scan_pages: int = 1,
        deep_scan_pages: int = 6,
        page_delay_seconds: float = 2.0,
        retry_backoff_seconds: float = 2.0,
    ):
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.page_size = page_size
        self.quick_scan_pages = quick_scan_pages
        self.deep_scan_pages = deep_scan_pages
        self.page_delay_seconds = page_delay_seconds
        self.retry_backoff_seconds = retry_backoff_seconds

    def _build_headers(self) -> Dict[str, str]:
        headers: Dict[str, str] = {"Referer": "https://www.coingecko.com/"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        return headers

    async def fetch_page(self, page: int, cursor: Optional[str] = None) -> PageResult:
        params = {
            "vs_currency": "usd",
            "order": "market_cap_desc",
            "per_page": self.page_size,
            "page": page,
            "price_change_percentage": "24h,7d,30d,1y",
        }
        response = await self.client.get_json(
            f"{self.base_url}/coins/markets",
            params=params,
            headers=self._build_headers(),
        )
        data = response.unwrap(provider=self.name)
        records: List[Dict[str, Any]] = [row for row in data if isinstance(row, dict)] if isinstance(data, list) else []
        return PageResult(records=records, has_more=len(records) >= self.page_size)

    async def collect(self, *, deep: bool = True) -> Coverage:
        pages = self.deep_scan_pages if deep else self.quick_scan_pages
        return await paginate(
            self.fetch_page,
            pages=pages,
            backoff_seconds=self.retry_backoff_seconds,
            page_delay_seconds=self.page_delay_seconds if pages > 1 else 0.0,
            provider=self.name,
        )

    def normalize(self, record: Dict[str, Any]) -> Optional[MarketItem]:
        symbol = (to_str(record.get("symbol")) or "").strip()
        price = to_float(record.get("current_price"))
        change_24h = to_float(record.get("price_change_percentage_24h"))
        if not symbol or price is None or change_24h is None:
            return None

        coin_id = to_str(record.get("id"))
        return MarketItem(
            id=coin_id or symbol,
            symbol=symbol,
            name=to_str(record.get("name")) or "",
            image=to_str(record.get("image")),
            price=price,
            change_24h=change_24h,
            change_7d=to_float(record.get("price_change_percentage_7d_in_currency")),
            change_30d=to_float(record.get("price_change_percentage_30d_in_currency")),
            change_1y=to_float(record.get("price_change_percentage_1y_in_currency")),
            volume_24h=to_float(record.get("total_volume"), 0.0),
            market_cap=to_float(record.get("market_cap")),
            url=f"https://www.coingecko.com/en/coins/{coin_id}" if coin_id else None,
            source=self.name,
        )

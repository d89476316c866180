from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MarketItem(BaseModel):
    """Normalized record for one asset (CEX) or pool/pair (DEX)."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    id: str = Field(description="Provider identifier of the asset or pool")
    symbol: str = Field(description="Ticker symbol as reported upstream")
    name: str = Field(default="", description="Display name")
    image: Optional[str] = Field(default=None, description="Icon URL or placeholder reference")
    price: float = Field(description="Last price in USD")
    change_24h: Optional[float] = Field(default=None, alias="change24h", description="24h change in percent")
    change_7d: Optional[float] = Field(default=None, alias="change7d")
    change_30d: Optional[float] = Field(default=None, alias="change30d")
    change_1y: Optional[float] = Field(default=None, alias="change1y")
    change_30m: Optional[float] = Field(default=None, alias="change30m")
    change_1h: Optional[float] = Field(default=None, alias="change1h")
    change_6h: Optional[float] = Field(default=None, alias="change6h")
    volume_24h: float = Field(default=0.0, alias="volume24h", description="24h traded volume in USD")
    market_cap: Optional[float] = Field(default=None, description="Market cap (CEX) or FDV (DEX)")
    liquidity: Optional[float] = Field(default=None, description="Pool liquidity in USD")
    network: Optional[str] = Field(default=None, description="Network or platform the record comes from")
    address: Optional[str] = Field(default=None, description="Pool or token contract address")
    url: Optional[str] = Field(default=None, description="Trading page on the source venue")
    source: str = Field(description="Upstream provider name")


class RankedResult(BaseModel):
    """Top-N gainers and losers produced by one refresh."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    timestamp: int = Field(description="Epoch milliseconds at which the result was produced")
    gainers: List[MarketItem] = Field(default_factory=list, description="Descending by 24h change")
    losers: List[MarketItem] = Field(default_factory=list, description="Ascending by 24h change")
    is_partial: bool = Field(default=False, description="Assembled from incomplete upstream coverage")

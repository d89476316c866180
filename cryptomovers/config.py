from pathlib import Path
from typing import List, Literal, Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]
EXCLUSIONS_DIR = Path(__file__).resolve().parent / "data" / "exclusions"

DEFAULT_EXCLUSION_SOURCES = [
    str(EXCLUSIONS_DIR / "stablecoins-exclusion-list.json"),
    str(EXCLUSIONS_DIR / "wrapped-tokens-exclusion-list.json"),
    str(EXCLUSIONS_DIR / "rewards-tokens-exclusion-list.json"),
]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Persistent store
    redis_url: str = Field(
        default="",
        description="Redis connection string; empty keeps entries in process memory",
    )
    entry_ttl_seconds: int = Field(default=172800, ge=60, description="Retention of cached entries (48h)")
    lease_ttl_seconds: int = Field(default=120, ge=1, description="Expiry of refresh lease markers")
    lease_mode: Literal["advisory", "strict"] = Field(
        default="advisory",
        description="advisory: unconditional marker write; strict: set-if-absent",
    )
    memory_store_max_size: int = Field(default=1000, description="Maximum keys held by the memory store")

    # Upstream HTTP
    upstream_timeout_seconds: float = Field(default=15.0, description="Per-request upstream timeout")
    user_agent: str = Field(
        default="Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
        description="User-Agent sent to upstream providers",
    )
    placeholder_icon_url: str = Field(
        default="https://cryptomovers.pages.dev/images/generic-coin.png",
        description="Icon reference used when no upstream icon is available",
    )

    # Exclusion lists (URLs or filesystem paths)
    exclusion_sources: List[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUSION_SOURCES),
        description="Block-lists of symbols removed before ranking",
    )

    # CEX movers (CoinGecko)
    coingecko_base_url: str = Field(default="https://api.coingecko.com/api/v3")
    coingecko_api_key: str = Field(default="", description="Coingecko demo API key")
    cex_soft_refresh_seconds: int = Field(default=12 * 60)
    cex_retry_delay_seconds: int = Field(default=2 * 60)
    cex_lease_timeout_seconds: int = Field(default=120)
    cex_cold_start_timeout_seconds: float = Field(default=45.0)
    cex_hard_expiry_seconds: Optional[int] = Field(default=None)
    cex_page_size: int = Field(default=250, ge=1, le=250)
    cex_quick_scan_pages: int = Field(default=1, ge=1)
    cex_deep_scan_pages: int = Field(default=6, ge=1)
    cex_page_delay_seconds: float = Field(default=2.0, ge=0)
    cex_retry_backoff_seconds: float = Field(default=2.0, ge=0)
    cex_top_n: int = Field(default=50, ge=1)

    # DEX pools by network (GeckoTerminal)
    geckoterminal_base_url: str = Field(default="https://api.geckoterminal.com/api/v2")
    dex_networks: List[str] = Field(default_factory=lambda: ["solana", "eth", "bsc", "base"])
    dex_pages_per_network: int = Field(default=2, ge=1)
    dex_soft_refresh_seconds: int = Field(default=5 * 60)
    dex_retry_delay_seconds: int = Field(default=2 * 60)
    dex_lease_timeout_seconds: int = Field(default=120)
    dex_cold_start_timeout_seconds: float = Field(default=45.0)
    dex_hard_expiry_seconds: Optional[int] = Field(default=None)
    dex_min_liquidity_usd: float = Field(default=5000.0, ge=0)
    dex_min_volume_usd: float = Field(default=1000.0, ge=0)
    dex_max_fdv_to_liquidity: Optional[float] = Field(
        default=None,
        description="Reject pools whose FDV exceeds liquidity by this factor; unset disables the check",
    )
    dex_top_n: int = Field(default=20, ge=1)
    dex_all_top_n: int = Field(default=50, ge=1)

    # DEX spot pairs (CoinMarketCap)
    coinmarketcap_base_url: str = Field(default="https://pro-api.coinmarketcap.com")
    cmc_pro_api_key: str = Field(
        default="",
        description="CoinMarketCap Pro API key",
        validation_alias=AliasChoices("cmc_pro_api_key", "CMC_PRO_API_KEY", "coinmarketcap_api_key"),
    )
    cmc_soft_refresh_seconds: int = Field(default=18 * 60)
    cmc_retry_delay_seconds: int = Field(default=2 * 60)
    cmc_lease_timeout_seconds: int = Field(default=120)
    cmc_cold_start_timeout_seconds: float = Field(default=45.0)
    cmc_hard_expiry_seconds: Optional[int] = Field(default=None)
    cmc_pages: int = Field(default=3, ge=1)
    cmc_page_size: int = Field(default=100, ge=1)
    cmc_min_liquidity_usd: float = Field(default=10000.0, ge=0)
    cmc_metadata_limit: int = Field(default=100, ge=0, description="Distinct assets side-loaded for icons")
    cmc_top_n: int = Field(default=20, ge=1)

    @property
    def has_coingecko_key(self) -> bool:
        return bool(self.coingecko_api_key)

    @property
    def has_cmc_key(self) -> bool:
        return bool(self.cmc_pro_api_key)


# Global settings instance
settings = Settings()

"""
Application configuration using Pydantic Settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class IngestionSettings(BaseSettings):
    """Tuning knobs for the ingestion pipeline."""

    model_config = SettingsConfigDict(env_prefix="INGESTION_")

    # Circuit breaker
    breaker_failure_threshold: int = Field(
        default=5,
        description="Consecutive failures before a source's circuit opens",
    )
    breaker_cooldown_minutes: float = Field(
        default=10.0,
        description="Minutes a tripped circuit stays open",
    )

    # Retry / backoff for a single outbound call
    retry_base_delay_seconds: float = Field(default=5.0)
    retry_max_delay_seconds: float = Field(default=15.0)
    max_retries: int = Field(default=3, ge=0)

    # Cache gate
    cache_ttl_minutes: int = Field(default=60)
    min_refresh_minutes: int = Field(
        default=15,
        description="A source that ran more recently than this is served from cache",
    )
    rate_limited_cache_minutes: int = Field(default=60)

    # Pacing
    inter_source_delay_seconds: float = Field(default=5.0, ge=0.0)
    inter_call_delay_seconds: float = Field(default=5.0, ge=0.0)
    insert_batch_size: int = Field(default=50, ge=1, le=500)
    insert_batch_delay_seconds: float = Field(default=0.5, ge=0.0)

    # Deduplication
    dedup_fallback_limit: int = Field(default=500)
    dedup_query_chunk: int = Field(default=200)

    http_timeout_seconds: float = Field(default=20.0, gt=0.0)

    @field_validator("breaker_failure_threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Breaker threshold must be at least 1")
        return v


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Impact News"
    app_version: str = "0.1.0"
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./impact_news.db",
        description="Async database URL (SQLAlchemy format)",
    )

    # Provider credentials (all optional; a source without a key is skipped)
    newsapi_key: str | None = Field(default=None)
    coindesk_api_key: str | None = Field(default=None)
    cryptopanic_api_key: str | None = Field(default=None)
    firecrawl_api_key: str | None = Field(default=None)

    # Provider switches
    newsapi_enabled: bool = True
    coindesk_enabled: bool = True
    cryptopanic_enabled: bool = True
    crypto_rss_enabled: bool = True
    firecrawl_enabled: bool = False

    # CryptoPanic query
    cryptopanic_filter: Literal["rising", "hot", "bullish", "bearish", "important"] = "rising"
    cryptopanic_currencies: str | None = Field(default=None, description="Comma separated, e.g. BTC,ETH")
    cryptopanic_regions: str = "en"
    cryptopanic_kind: Literal["news", "media", "all"] = "news"

    # CoinDesk
    coindesk_limit: int = Field(default=10, ge=1, le=100)

    # RSS crawler
    crawl_sites: list[str] = Field(
        default=[
            "https://www.coindesk.com/arc/outboundfeeds/rss/",
            "https://cointelegraph.com/rss",
            "https://decrypt.co/feed",
        ],
    )
    crawl_items_per_site: int = Field(default=10, ge=1)

    # FireCrawl extraction
    firecrawl_urls: list[str] = Field(default=["https://www.coindesk.com/"])
    firecrawl_prompt: str = Field(
        default=(
            "Extract the latest cryptocurrency news stories from this page, "
            "with title, content, published date, source and url."
        ),
    )

    # Scheduler
    aggregation_interval_minutes: int = Field(
        default=15,
        description="How often the scheduler wakes up to check whether a run is due",
    )
    aggregation_default_frequency: str = Field(default="15min")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
    )

    # Pagination
    default_page_size: int = Field(default=9, ge=1, le=100)
    max_page_size: int = Field(default=100, ge=1, le=100)
    ranking_window: int = Field(
        default=100,
        description="Number of stored articles personalized before paginating a user feed",
    )
    read_cache_ttl_seconds: int = Field(default=300)
    read_cache_max_entries: int = Field(default=64, ge=1)

    ingestion: IngestionSettings = Field(default_factory=IngestionSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

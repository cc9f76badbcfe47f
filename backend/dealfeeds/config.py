"""Application configuration via Pydantic Settings."""

from typing import List
from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Global application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./data/dealfeeds.db"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosted Postgres URLs come as postgresql:// but asyncpg needs postgresql+asyncpg://"""
        url = self.DATABASE_URL
        if url.startswith("postgresql://"):
            self.DATABASE_URL = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        elif url.startswith("postgres://"):
            self.DATABASE_URL = url.replace("postgres://", "postgresql+asyncpg://", 1)
        return self

    # App
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # Woot API
    WOOT_API_BASE_URL: str = "https://api.woot.com"
    WOOT_API_KEY: str = ""
    # Comma-separated list of upstream feeds fetched on every full refresh
    WOOT_CATEGORIES: str = "Clearance,Computers,Electronics,Featured,Home,Gourmet,Shirts,Sports,Tools,Wootoff"

    # Categories whose partitions exist before the first refresh (comma-separated)
    SEED_CATEGORIES: str = ""

    # Refresh scheduling
    UPDATE_CRON: str = "*/30 * * * *"
    CATEGORY_REFRESH_MINUTES: int = 0  # 0 disables per-category refresh jobs

    # Retention and feed paging
    MAX_ITEMS: int = 1000
    FEED_PAGE_SIZE: int = 50

    # Feed metadata
    FEED_TITLE: str = "Woot Deals"
    FEED_DESCRIPTION: str = "Latest deals from Woot"
    FEED_LANGUAGE: str = "en"
    PUBLIC_BASE_URL: str = "http://localhost:8000"
    SITE_URL: str = "https://www.woot.com/"

    def get_woot_categories(self) -> List[str]:
        """Parse WOOT_CATEGORIES into a list of upstream feed names.

        Returns:
            List of category names, empty if WOOT_CATEGORIES is not set
        """
        return _split_csv(self.WOOT_CATEGORIES)

    def get_seed_categories(self) -> List[str]:
        """Parse SEED_CATEGORIES into a list of category names."""
        return _split_csv(self.SEED_CATEGORIES)


def _split_csv(value: str) -> List[str]:
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


settings = Settings()

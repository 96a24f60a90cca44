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
        extra="ignore",
    )

    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./cardwatch.db"

    @model_validator(mode="after")
    def fix_database_url(self) -> "Settings":
        """Hosted Postgres hands out postgresql:// but asyncpg needs postgresql+asyncpg://"""
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
    LOG_JSON: bool = False

    # Discord
    DISCORD_WEBHOOK_URL: str = ""
    DISCORD_USERNAME: str = "Card Watch"
    DISCORD_MENTION: str = ""
    DRY_RUN: bool = False

    # Pacing
    PACING_TEST_MODE: bool = False
    PACING_TEST_DIVISOR: float = 10.0
    PACING_MINIMUM_DELAY_MS: float = 1000.0

    # Fetching
    FETCH_TIMEOUT_SECONDS: float = 60.0
    BROWSER_HEADLESS: bool = True

    # Scheduling
    RUN_INTERVAL_MINUTES: int = 30

    # Comma-separated site ids; empty means every registered site
    ENABLED_SITES: str = ""

    def get_enabled_sites(self) -> List[str]:
        """Parse ENABLED_SITES into a list of site ids.

        Returns:
            List of site id strings, empty if ENABLED_SITES is not set
        """
        if not self.ENABLED_SITES:
            return []
        return [s.strip().lower() for s in self.ENABLED_SITES.split(",") if s.strip()]


settings = Settings()

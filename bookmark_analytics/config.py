"""
Bookmark Analytics — Configuration via environment variables.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """All settings read from env / .env file."""

    # Hosted database (Supabase Postgres)
    hosted_database_url: str = Field(
        default="",
        description="Async SQLAlchemy URL of the hosted Postgres, e.g. postgresql+asyncpg://...",
    )
    hosted_database_key: str = Field(
        default="",
        description="Service-role credential; used as the DB password when the URL has none",
    )

    # Runtime mode; the file fallback is never used in production
    environment: str = Field(default="development")

    # Local JSON fallback
    analytics_file_path: str = Field(default="data/bookmark-analytics.json")

    # Retention
    daily_retention_days: int = Field(default=30)
    weekly_retention_buckets: int = Field(default=12)
    monthly_retention_buckets: int = Field(default=12)

    # Global stats
    active_window_days: int = Field(default=7, description="A subject is active if visited within this window")

    # Seconds between background prune runs (0 disables the task)
    prune_interval: int = Field(default=3600)

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def hosted_database_configured(self) -> bool:
        """Both hosted credentials present, non-empty and not template placeholders."""
        url = self.hosted_database_url.strip()
        key = self.hosted_database_key.strip()
        if not url or not key:
            return False
        return "placeholder" not in url and "placeholder" not in key

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()

"""
Configuration settings for the PipeTrak milestone engine.
All deployment-specific values are loaded from environment variables.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Application
    app_name: str = "PipeTrak Milestones"
    debug: bool = Field(default=False)
    environment: str = Field(default="production")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database (PostgreSQL)
    database_url: str = Field(default="")
    database_echo: bool = Field(default=False)
    db_pool_size: int = Field(default=10)
    db_max_overflow: int = Field(default=20)
    db_pool_timeout: int = Field(default=30)
    db_pool_recycle: int = Field(default=1800)

    # Redis (cache, progress, realtime channel)
    redis_url: str = Field(default="redis://localhost:6379")
    cache_prefix: str = Field(default="pipetrak:")

    # Reporting calendar
    timezone: str = Field(default="America/New_York")
    # Monday == 0; the previous week stays editable until this weekday/hour
    backdating_cutoff_weekday: int = Field(default=1, ge=0, le=6)
    backdating_cutoff_hour: int = Field(default=9, ge=0, le=23)

    # Milestone engine
    weld_milestone_name: str = Field(default="Weld Made")
    bulk_default_batch_size: int = Field(default=50, ge=1)
    bulk_max_batch_size: int = Field(default=500, ge=1)
    bulk_max_updates: int = Field(default=5000, ge=1)
    progress_cache_ttl: int = Field(default=3600)
    undo_history_cache_ttl: int = Field(default=300)
    undo_history_limit: int = Field(default=10)

    # Notifications
    notification_webhook_url: str = Field(default="")
    notification_timeout_seconds: int = Field(default=10)


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the application settings."""
    return settings

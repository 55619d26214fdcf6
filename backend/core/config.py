"""Application settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from the environment or a ``.env`` file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./socialgraph.db",
        description="SQLAlchemy async database URL",
    )
    database_echo: bool = Field(default=False, description="Log emitted SQL")
    redis_url: str = Field(default="redis://localhost:6379/0")

    default_page_limit: int = Field(default=10, ge=1)
    max_page_limit: int = Field(default=100, ge=1)

    # Removed connections stay out of suggestions for this many days.
    removed_connection_ttl_days: int = Field(default=30, ge=0)
    # Recently requested peers are not suggested again within this window.
    connection_request_cooldown_hours: int = Field(default=24, ge=0)

    connection_request_rate_limit: int = Field(default=20, ge=0)
    connection_request_rate_window_seconds: int = Field(default=3600, ge=0)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

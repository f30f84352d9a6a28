"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


SYNC_TYPES: tuple[str, ...] = ("movies", "series", "channels", "epg")


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="StreamCache", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    xtream_url: str | None = Field(default=None, alias="XTREAM_URL")
    xtream_username: str | None = Field(default=None, alias="XTREAM_USERNAME")
    xtream_password: str | None = Field(default=None, alias="XTREAM_PASSWORD")

    gateway_timeout_seconds: float = Field(
        default=30.0, alias="GATEWAY_TIMEOUT", gt=0, le=600
    )
    gateway_retries: int = Field(default=2, alias="GATEWAY_RETRIES", ge=0, le=10)

    sync_movies_hours: float = Field(default=24, alias="SYNC_MOVIES_HOURS", ge=0)
    sync_series_hours: float = Field(default=24, alias="SYNC_SERIES_HOURS", ge=0)
    sync_channels_hours: float = Field(
        default=12, alias="SYNC_CHANNELS_HOURS", ge=0
    )
    sync_epg_hours: float = Field(default=1, alias="SYNC_EPG_HOURS", ge=0)
    sync_chunk_size: int = Field(
        default=500, alias="SYNC_CHUNK_SIZE", ge=1, le=10_000
    )

    history_limit: int = Field(default=100, alias="HISTORY_LIMIT", ge=1, le=10_000)
    detail_ttl_hours: float = Field(default=168, alias="DETAIL_TTL_HOURS", ge=0)
    continue_watching_complete_percent: float = Field(
        default=95, alias="CONTINUE_WATCHING_COMPLETE_PERCENT", gt=0, le=100
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./streamcache.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("xtream_url", mode="before")
    @classmethod
    def _normalise_xtream_url(cls, value: object) -> object:
        """Strip trailing slashes and an explicit ``player_api.php`` suffix."""

        if value is None:
            return None
        if not isinstance(value, str):
            return value
        cleaned = value.strip().rstrip("/")
        if cleaned.lower().endswith("/player_api.php"):
            cleaned = cleaned[: -len("/player_api.php")].rstrip("/")
        return cleaned or None

    @field_validator("xtream_username", "xtream_password", mode="before")
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @property
    def sync_thresholds(self) -> dict[str, float]:
        """Return the minimum hours between successful syncs per type."""

        return {
            "movies": self.sync_movies_hours,
            "series": self.sync_series_hours,
            "channels": self.sync_channels_hours,
            "epg": self.sync_epg_hours,
        }

    @property
    def has_credentials(self) -> bool:
        return bool(self.xtream_url and self.xtream_username and self.xtream_password)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Iterable, Literal

from pydantic import Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DAY_SECONDS = 24 * 60 * 60
DEFAULT_PRIORITY_STATUSES: tuple[str, ...] = ("Watching",)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="DramaLink", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    kuryana_url: HttpUrl = Field(
        default="https://kuryana.tbdh.app", alias="KURYANA_URL"
    )
    kuryana_timeout_seconds: float = Field(
        default=8.0, alias="KURYANA_TIMEOUT", gt=0, le=120
    )

    link_cache_ttl_seconds: int = Field(
        default=7 * DAY_SECONDS, alias="LINK_CACHE_TTL", ge=0
    )
    person_cache_ttl_seconds: int = Field(
        default=7 * DAY_SECONDS, alias="PERSON_CACHE_TTL", ge=0
    )
    sync_stale_seconds: int = Field(
        default=6 * DAY_SECONDS, alias="SYNC_STALE_AFTER", ge=0
    )

    warm_batch_size: int = Field(default=3, alias="WARM_BATCH_SIZE", ge=1, le=50)
    warm_batch_delay_seconds: float = Field(
        default=0.9, alias="WARM_BATCH_DELAY", ge=0
    )
    sync_time_budget_seconds: float = Field(
        default=240.0, alias="SYNC_TIME_BUDGET", gt=0
    )
    sync_item_delay_seconds: float = Field(
        default=1.5, alias="SYNC_ITEM_DELAY", ge=0
    )
    priority_statuses: tuple[str, ...] = Field(
        default=DEFAULT_PRIORITY_STATUSES, alias="PRIORITY_STATUSES"
    )

    cron_secret: str | None = Field(default=None, alias="CRON_SECRET")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./dramalink.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("priority_statuses", mode="before")
    @classmethod
    def _parse_priority_statuses(cls, value: object) -> tuple[str, ...]:
        """Accept comma separated status names from the environment."""

        if value is None:
            return DEFAULT_PRIORITY_STATUSES
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("PRIORITY_STATUSES must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if entry and entry not in cleaned:
                cleaned.append(entry)
        return tuple(cleaned) or DEFAULT_PRIORITY_STATUSES

    @model_validator(mode="after")
    def _check_sync_threshold(self) -> "Settings":
        """The background sweep must run ahead of read-time staleness."""

        if self.sync_stale_seconds >= self.link_cache_ttl_seconds:
            raise ValueError(
                "SYNC_STALE_AFTER must be shorter than LINK_CACHE_TTL"
            )
        return self

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

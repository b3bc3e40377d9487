"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="IzleNext", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")

    omdb_api_url: HttpUrl = Field(
        default="https://www.omdbapi.com", alias="OMDB_API_URL"
    )
    omdb_api_key: str | None = Field(default=None, alias="OMDB_API_KEY")
    omdb_timeout_seconds: float = Field(
        default=2.0, alias="OMDB_TIMEOUT", gt=0, le=30
    )

    watchmode_api_url: HttpUrl = Field(
        default="https://api.watchmode.com/v1", alias="WATCHMODE_API_URL"
    )
    watchmode_api_key: str | None = Field(default=None, alias="WATCHMODE_API_KEY")

    enrichment_head_size: int = Field(
        default=4, alias="ENRICHMENT_HEAD_SIZE", ge=0, le=20
    )
    rating_display_size: int = Field(
        default=10, alias="RATING_DISPLAY_SIZE", ge=1, le=50
    )
    recent_search_limit: int = Field(
        default=10, alias="RECENT_SEARCH_LIMIT", ge=1, le=50
    )

    site_name: str = Field(default="İZLE", alias="SITE_NAME")
    site_name_part2: str = Field(default="NEXT", alias="SITE_NAME_PART2")
    contact_email: str = Field(
        default="support@izlenext.com",
        alias="CONTACT_EMAIL",
        validation_alias=AliasChoices("CONTACT_EMAIL", "SUPPORT_EMAIL"),
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./izlenext.db", alias="DATABASE_URL"
    )
    local_cache_url: str = Field(
        default="sqlite:///./izlenext-cache.db", alias="LOCAL_CACHE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator(
        "tmdb_api_key", "omdb_api_key", "watchmode_api_key", mode="before"
    )
    @classmethod
    def _strip_blank_keys(cls, value: object) -> object:
        """Treat blank credentials as missing."""

        if value is None:
            return None
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

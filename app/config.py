"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


DEFAULT_INSTANCE_URL = "https://peertube.futo.org"
DEFAULT_INDEX_INSTANCES: tuple[str, ...] = (
    "poast.tv",
    "videos.upr.fr",
    "peertube.red",
    "video.blinkyparts.com",
    "vid.chaoticmira.gay",
    "peertube.nthpyro.dev",
    "watch.bojidar-bg.dev",
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="PeerFeed", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    default_instance_url: HttpUrl = Field(
        default=DEFAULT_INSTANCE_URL,
        alias="DEFAULT_INSTANCE_URL",
        validation_alias=AliasChoices("DEFAULT_INSTANCE_URL", "PEERTUBE_BASE_URL"),
    )
    index_instances: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_INDEX_INSTANCES, alias="INDEX_INSTANCES"
    )
    sepia_search_url: HttpUrl = Field(
        default="https://sepiasearch.org", alias="SEPIA_SEARCH_URL"
    )

    health_cooldown_seconds: int = Field(
        default=600, alias="HEALTH_COOLDOWN", ge=1, le=86_400
    )
    request_timeout_seconds: float = Field(
        default=10.0, alias="REQUEST_TIMEOUT", gt=0, le=120
    )
    host_page_size: int = Field(default=20, alias="HOST_PAGE_SIZE", ge=1, le=100)
    feed_page_size: int = Field(default=20, alias="FEED_PAGE_SIZE", ge=1, le=100)

    settings_retry_attempts: int = Field(
        default=5, alias="SETTINGS_RETRY_ATTEMPTS", ge=1, le=20
    )
    settings_retry_delay_ms: int = Field(
        default=150, alias="SETTINGS_RETRY_DELAY_MS", ge=0, le=10_000
    )

    # Raw JSON; parsed leniently by ``normalize_settings`` rather than here.
    feed_settings: str | None = Field(default=None, alias="FEED_SETTINGS")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./peerfeed.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("index_instances", mode="before")
    @classmethod
    def _parse_index_instances(cls, value: object) -> tuple[str, ...]:
        """Normalise the fallback instance list from environment values."""

        if value is None:
            return DEFAULT_INDEX_INSTANCES
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("INDEX_INSTANCES must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if entry and entry not in cleaned:
                cleaned.append(entry)
        return tuple(cleaned)

    @property
    def default_instance(self) -> str:
        """Return the primary instance without the trailing slash pydantic adds."""

        return str(self.default_instance_url).rstrip("/")

    @property
    def sepia_search_host(self) -> str:
        return str(self.sepia_search_url).rstrip("/")

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()

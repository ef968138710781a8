from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from curator.core.version import __version__


class CatalogInstanceConfig(BaseModel):
    """One upstream catalog source."""

    id: str
    label: str
    url: str = ""
    api_key: str | None = None
    # Lower numbers rank first; the lowest is the primary source
    priority: int = 0


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="allow",
    )

    PORT: int = 8000
    APP_ENV: Literal["development", "production"] = "production"
    LOG_LEVEL: str = "INFO"

    # Overlay store (ratings, favorites, watch history, rankings, access rules)
    OVERLAY_BACKEND: Literal["memory", "redis"] = "memory"
    REDIS_URL: str = "redis://redis:6379/0"
    # Maximum number of connections Redis client will open per process
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_KEY_PREFIX: str = "curator:"

    # Upstream catalog sources; the one with the lowest priority number is the primary
    CATALOG_INSTANCES: list[CatalogInstanceConfig] = []
    CATALOG_TIMEOUT_SECONDS: float = 30.0
    CATALOG_MAX_RETRIES: int = 3
    CATALOG_VERSION_POLL_SECONDS: int = 60

    DEFAULT_PER_PAGE: int = 40
    MAX_PER_PAGE: int = 500

    VISIBILITY_CACHE_MAX_ENTRIES: int = 5000
    APPLY_EMPTY_FILTER_TO_ELEVATED: bool = True

    # Recommendations
    HIGH_RATING_THRESHOLD: int = 80
    RECOMMENDATION_MAX_CANDIDATES: int = 500
    RECOMMENDATION_TIERS: int = 10
    RECOMMENDATION_PER_PAGE: int = 24
    SIMILAR_PER_PAGE: int = 12
    SIMILAR_MAX_CANDIDATES: int = 500
    IMPLICIT_PERCENTILE_THRESHOLD: int = 50


settings = Settings()

APP_VERSION = __version__

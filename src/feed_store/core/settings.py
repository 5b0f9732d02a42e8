"""Runtime settings for the feed store.

Settings are loaded from environment variables (or a local ``.env`` file)
with defaults suitable for development against a local API server.
"""

import logging

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration options for the store, orchestrator and API client."""

    # Application metadata, sent with every API request
    app_name: str = Field(default="Feed Store", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    app_platform: str = Field(default="python", alias="APP_PLATFORM")

    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Remote API
    api_base_url: str = Field(default="http://localhost:8080", alias="FEED_API_BASE_URL")
    api_token: str | None = Field(default=None, alias="FEED_API_TOKEN")
    api_timeout_seconds: float = Field(default=10.0, alias="FEED_API_TIMEOUT_SECONDS")

    # Soft refreshes reuse a feed page fetched less than this many seconds ago
    feed_cache_ttl_seconds: float = Field(default=30.0, alias="FEED_CACHE_TTL_SECONDS")

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )


def configure_logging(level: str | None = None) -> None:
    """Apply the configured log level to the root logger.

    Host applications that already configure logging can skip this.
    """
    resolved = (level or settings.log_level).upper()
    if settings.debug:
        resolved = "DEBUG"
    logging.basicConfig(
        level=resolved,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


settings = Settings()

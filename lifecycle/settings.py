"""Lifecycle settings loaded from environment variables or .env file."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Lifecycle settings.

    Loaded from ``LIFECYCLE_*`` environment variables or a .env file in the
    working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIFECYCLE_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # API credentials (HTTP digest auth)
    public_key: str = ""
    private_key: str = ""

    # Endpoints
    api_url: str = "https://api.tidbcloud.com"
    dedicated_api_url: str = "https://dedicated.tidbapi.com"
    serverless_api_url: str = "https://serverless.tidbapi.com"
    request_timeout: float = 30.0

    # Convergence
    not_found_retry_budget: int = 20
    default_timeout: float = 3600.0  # seconds
    default_interval: float = 10.0  # seconds, used when a kind has no own interval


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

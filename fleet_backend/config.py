"""
Configuration and settings for the fleet backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_PROVIDER_URL = "https://rpi1.eagle3dstreaming.com/api/nodes"


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Database (Postgres expected, any SQLAlchemy URL works)
    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, alias="FLEET_USE_IN_MEMORY_BACKENDS"
    )

    # Upstream node status feed
    provider_url: str = Field(
        default=DEFAULT_PROVIDER_URL, alias="FLEET_PROVIDER_URL"
    )
    # None keeps the transport default (no timeout).
    request_timeout_seconds: Optional[float] = Field(
        default=None, alias="FLEET_REQUEST_TIMEOUT_SECONDS"
    )

    # Delay before re-reading a machine's status after start/stop
    status_refresh_delay_seconds: float = Field(
        default=30.0, alias="FLEET_STATUS_REFRESH_DELAY_SECONDS"
    )

    # HTTP surface
    cors_allowed_origins: str = Field(default="", alias="FLEET_CORS_ORIGINS")
    static_dir: Optional[str] = Field(default=None, alias="FLEET_STATIC_DIR")

    log_level: str = Field(default="INFO", alias="FLEET_LOG_LEVEL")

    def cors_origins(self) -> list[str]:
        origins = [
            item.strip()
            for item in self.cors_allowed_origins.split(",")
            if item.strip()
        ]
        return origins or ["*"]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()

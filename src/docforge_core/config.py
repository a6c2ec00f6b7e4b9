"""
Core service configuration from environment variables.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class CoreConfig(BaseSettings):
    """
    Quota, storage and reaper settings.

    QUOTA_TIMEZONE is the reference clock for day/month boundaries
    (IANA name, e.g. "UTC" or "Europe/Berlin").
    """

    # Quota ledger
    QUOTA_TIMEZONE: str = Field(default="UTC")
    QUOTA_MAX_ATTEMPTS: int = Field(default=3, ge=1)

    # Object storage
    STORAGE_ROOT: str = Field(default="uploads")

    # Reaper
    REAPER_INTERVAL_SECONDS: float = Field(default=3600.0, gt=0)  # hourly
    REAPER_BATCH_SIZE: int = Field(default=500, ge=1)

    # Usage recorder
    USAGE_LOG_MAX_ATTEMPTS: int = Field(default=3, ge=1)
    USAGE_LOG_RETRY_WAIT_SECONDS: float = Field(default=0.2, ge=0)  # exponential backoff base
    USAGE_LOG_RETRY_MAX_WAIT_SECONDS: float = Field(default=2.0, ge=0)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }


# Global config instance
core_config = CoreConfig()


def get_core_config() -> CoreConfig:
    """Get core configuration (allows reloading from env)."""
    return CoreConfig()

"""
Database configuration from environment variables.

Supports a full DATABASE_URL or individual connection settings.
"""

from typing import Optional

from pydantic_settings import BaseSettings
from pydantic import Field


class DatabaseConfig(BaseSettings):
    """
    Database configuration loaded from environment variables.

    Supports:
    - Direct connection URL (any SQLAlchemy async URL, e.g. sqlite+aiosqlite for tests)
    - Individual PostgreSQL settings (asyncpg)
    """

    # Database credentials
    DATABASE_USER: str = Field(default="postgres")
    DATABASE_PASSWORD: str = Field(default="")
    DATABASE_NAME: str = Field(default="docforge")
    DATABASE_HOST: str = Field(default="localhost")
    DATABASE_PORT: int = Field(default=5432)

    # Direct connection URL (overrides individual settings)
    DATABASE_URL: Optional[str] = Field(default=None)

    # Connection pool settings
    DB_POOL_SIZE: int = Field(default=5)
    DB_MAX_OVERFLOW: int = Field(default=10)
    DB_POOL_TIMEOUT: int = Field(default=30)
    DB_POOL_RECYCLE: int = Field(default=1800)  # 30 minutes
    DB_ECHO: bool = Field(default=False)

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "extra": "ignore",
    }

    def get_connection_url(self) -> str:
        """Get the database connection URL."""
        if self.DATABASE_URL:
            return normalize_async_url(self.DATABASE_URL)
        return (
            f"postgresql+asyncpg://{self.DATABASE_USER}:{self.DATABASE_PASSWORD}"
            f"@{self.DATABASE_HOST}:{self.DATABASE_PORT}/{self.DATABASE_NAME}"
        )


def normalize_async_url(url: str) -> str:
    """Convert postgres:// and postgresql:// URLs to postgresql+asyncpg://."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


# Global config instance
db_config = DatabaseConfig()


def get_db_config() -> DatabaseConfig:
    """Get database configuration (allows reloading from env)."""
    return DatabaseConfig()

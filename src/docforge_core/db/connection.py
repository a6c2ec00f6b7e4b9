"""
Async database connection management.

DatabaseManager owns one AsyncEngine and hands out sessions that commit on
success and roll back on error.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from docforge_core.db.config import DatabaseConfig, get_db_config
from docforge_core.models.base import Base

logger = logging.getLogger(__name__)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    """SQLite ignores ON DELETE RESTRICT unless foreign keys are switched on per connection."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DatabaseManager:
    """
    Lazily-initialized async engine and session factory.

    Usage:
        async with db.session() as session:
            session.add(obj)
        # committed here
    """

    def __init__(self, config: Optional[DatabaseConfig] = None):
        self._config = config
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            self.init()
        return self._engine

    def init(self, url: Optional[str] = None, **engine_kwargs: Any) -> None:
        """
        Create the engine and session factory.

        Args:
            url: Connection URL; defaults to the configured DATABASE_URL
            **engine_kwargs: Extra create_async_engine arguments
        """
        config = self._config or get_db_config()
        url = url or config.get_connection_url()

        kwargs: dict = {"echo": config.DB_ECHO}
        if not url.startswith("sqlite"):
            kwargs.update(
                pool_size=config.DB_POOL_SIZE,
                max_overflow=config.DB_MAX_OVERFLOW,
                pool_timeout=config.DB_POOL_TIMEOUT,
                pool_recycle=config.DB_POOL_RECYCLE,
                pool_pre_ping=True,
            )
        kwargs.update(engine_kwargs)

        self._engine = create_async_engine(url, **kwargs)
        if self._engine.dialect.name == "sqlite":
            event.listen(self._engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info(f"Database engine initialized: {self._engine.url.render_as_string(hide_password=True)}")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; commit on normal exit, roll back on exception."""
        if self._session_factory is None:
            self.init()
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def create_tables(self) -> None:
        """Create all tables (tests and local development; production uses Alembic)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def close(self) -> None:
        """Dispose of the engine and its connection pool."""
        if self._engine is not None:
            await self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


# Global singleton
db = DatabaseManager()


async def get_session() -> AsyncIterator[AsyncSession]:
    """Dependency-injection helper yielding a session from the global manager."""
    async with db.session() as session:
        yield session

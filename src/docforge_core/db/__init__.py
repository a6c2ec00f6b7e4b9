"""
Database connection management for docforge-core.

Provides:
- DatabaseManager: Async connection manager (PostgreSQL via asyncpg, SQLite via aiosqlite)
- db: Global singleton instance
- get_session: Dependency injection helper
"""

from docforge_core.db.config import DatabaseConfig, db_config, get_db_config
from docforge_core.db.connection import DatabaseManager, db, get_session

__all__ = [
    "DatabaseConfig",
    "db_config",
    "get_db_config",
    "DatabaseManager",
    "db",
    "get_session",
]

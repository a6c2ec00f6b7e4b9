"""
Base model and common types for SQLAlchemy models.
"""

from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase


class SubscriptionTier(str, PyEnum):
    """Subscription levels; the set is closed."""

    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class FileStatus(str, PyEnum):
    """File lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DELETED = "deleted"


class UserRole(str, PyEnum):
    """User roles."""

    USER = "user"
    ADMIN = "admin"


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Interpret naive datetimes read back from the database as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass

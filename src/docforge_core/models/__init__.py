"""
SQLAlchemy 2.0 async models.

Tables:
- Users: Subscription tier and credit usage counters
- Files: Uploaded/derived file metadata and lifecycle state (bytes in object storage)
- UsageRecords: Append-only usage log for analytics and audit
"""

from docforge_core.models.base import (
    Base,
    SubscriptionTier,
    FileStatus,
    UserRole,
    JSONType,
    utc_now,
    as_utc,
)
from docforge_core.models.core import UserModel
from docforge_core.models.files import FileModel
from docforge_core.models.usage import UsageRecordModel

__all__ = [
    # Base
    "Base",
    "SubscriptionTier",
    "FileStatus",
    "UserRole",
    "JSONType",
    "utc_now",
    "as_utc",
    # Core models
    "UserModel",
    # File models
    "FileModel",
    # Usage models
    "UsageRecordModel",
]

"""
docforge-core library.

Credit-gated resource lifecycle for the docforge tool suite:
- SQLAlchemy models (users with credit counters, files, usage_records)
- QuotaLedger: per-tier daily/monthly credit quotas with atomic reservations
- UsageRecorder: append-only usage log
- FileLifecycleManager + Reaper: file state machine and expiry-driven cleanup
- DatabaseManager for async connections (PostgreSQL via asyncpg, SQLite for tests)
- Alembic migrations for schema management
"""

__version__ = "0.1.0"

# Re-export commonly used components
from docforge_core.models import (
    Base,
    SubscriptionTier,
    FileStatus,
    UserRole,
    UserModel,
    FileModel,
    UsageRecordModel,
)
from docforge_core.db import DatabaseManager, db, get_session
from docforge_core.storage import ObjectStorage, LocalFileStorage
from docforge_core.services import (
    UNLIMITED,
    TierLimits,
    get_tier_limits,
    get_tool_credit_cost,
    QuotaLedger,
    quota_ledger,
    ReservationResult,
    LimitKind,
    UsageRecorder,
    usage_recorder,
    FileLifecycleManager,
    file_lifecycle_manager,
    FileOperationResult,
    LifecycleError,
    Reaper,
    SweepResult,
)

__all__ = [
    # Version
    "__version__",
    # Models
    "Base",
    "SubscriptionTier",
    "FileStatus",
    "UserRole",
    "UserModel",
    "FileModel",
    "UsageRecordModel",
    # Database
    "DatabaseManager",
    "db",
    "get_session",
    # Storage
    "ObjectStorage",
    "LocalFileStorage",
    # Services
    "UNLIMITED",
    "TierLimits",
    "get_tier_limits",
    "get_tool_credit_cost",
    "QuotaLedger",
    "quota_ledger",
    "ReservationResult",
    "LimitKind",
    "UsageRecorder",
    "usage_recorder",
    "FileLifecycleManager",
    "file_lifecycle_manager",
    "FileOperationResult",
    "LifecycleError",
    "Reaper",
    "SweepResult",
]

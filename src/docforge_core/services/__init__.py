"""
docforge-core services.

Credit quotas, usage logging, and the file lifecycle.
"""

from docforge_core.services.catalog import (
    UNLIMITED,
    TierLimits,
    TIER_LIMITS,
    TOOL_CREDIT_COSTS,
    parse_tier,
    get_tier_limits,
    get_file_expiry,
    get_tool_credit_cost,
)
from docforge_core.services.clock import Clock, SystemClock, system_clock
from docforge_core.services.quota_service import (
    QuotaLedger,
    quota_ledger,
    ReservationResult,
    ReservationError,
    LimitKind,
    CreditStatus,
    period_boundaries,
    effective_counters,
)
from docforge_core.services.usage_service import UsageRecorder, usage_recorder
from docforge_core.services.file_service import (
    FileLifecycleManager,
    file_lifecycle_manager,
    FileOperationResult,
    LifecycleError,
    ALLOWED_SOURCES,
)
from docforge_core.services.reaper import Reaper, SweepResult

__all__ = [
    # Catalog
    "UNLIMITED",
    "TierLimits",
    "TIER_LIMITS",
    "TOOL_CREDIT_COSTS",
    "parse_tier",
    "get_tier_limits",
    "get_file_expiry",
    "get_tool_credit_cost",
    # Clock
    "Clock",
    "SystemClock",
    "system_clock",
    # Quota
    "QuotaLedger",
    "quota_ledger",
    "ReservationResult",
    "ReservationError",
    "LimitKind",
    "CreditStatus",
    "period_boundaries",
    "effective_counters",
    # Usage
    "UsageRecorder",
    "usage_recorder",
    # Files
    "FileLifecycleManager",
    "file_lifecycle_manager",
    "FileOperationResult",
    "LifecycleError",
    "ALLOWED_SOURCES",
    # Reaper
    "Reaper",
    "SweepResult",
]

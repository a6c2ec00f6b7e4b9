"""
Tier catalog - static limits per subscription tier.

Pure data: credit limits, file retention, and per-tool credit costs.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Union

from docforge_core.exceptions import UnknownTierError
from docforge_core.models.base import SubscriptionTier

# Limit value meaning "no quota enforcement"
UNLIMITED = -1


@dataclass(frozen=True)
class TierLimits:
    """Credit limits and file retention for one tier."""

    daily_credits: int
    monthly_credits: int
    file_retention_hours: int

    @property
    def is_daily_unlimited(self) -> bool:
        return self.daily_credits == UNLIMITED

    @property
    def is_monthly_unlimited(self) -> bool:
        return self.monthly_credits == UNLIMITED

    @property
    def is_unlimited(self) -> bool:
        return self.is_daily_unlimited and self.is_monthly_unlimited


TIER_LIMITS: Dict[SubscriptionTier, TierLimits] = {
    SubscriptionTier.FREE: TierLimits(
        daily_credits=25, monthly_credits=50, file_retention_hours=1
    ),
    SubscriptionTier.PRO: TierLimits(
        daily_credits=100, monthly_credits=500, file_retention_hours=24
    ),
    SubscriptionTier.ENTERPRISE: TierLimits(
        daily_credits=UNLIMITED, monthly_credits=UNLIMITED, file_retention_hours=24
    ),
}

_missing_tiers = set(SubscriptionTier) - set(TIER_LIMITS)
if _missing_tiers:
    raise RuntimeError(
        f"TIER_LIMITS has no entry for: {sorted(t.value for t in _missing_tiers)}"
    )


# Credits charged per tool; conversion tools are free
TOOL_CREDIT_COSTS: Dict[str, int] = {
    # AI tools
    "ai_chat": 2,
    "ai_summary": 1,
    "ai_invoice": 2,
    "ai_resume": 3,
    "ai_legal": 3,
    "ai_data_clean": 2,
    "voice_to_doc": 2,
    "ai_translation": 2,
    "ai_grammar": 1,
    "ai_ocr": 2,
    "ai_writing": 2,
    "ai_email_extractor": 1,
    # PDF tools
    "pdf_to_word": 0,
    "word_to_pdf": 0,
    "pdf_merge": 0,
    "pdf_compress": 0,
    "pdf_split": 0,
    "pdf_lock": 0,
    "pdf_unlock": 0,
    "pdf_to_image": 0,
    "pdf_watermark": 0,
    "pdf_rotate": 0,
    "image_to_pdf": 0,
    "pdf_to_excel": 0,
    "pdf_page_delete": 0,
    "esign": 0,
    # Image tools
    "image_compress": 0,
    "image_resize": 0,
    "image_convert": 0,
    "bg_remove": 0,
    "image_crop": 0,
    "image_filter": 0,
    "image_watermark": 0,
    "collage_maker": 0,
    # Data tools
    "csv_to_excel": 0,
    "excel_clean": 0,
    "json_format": 0,
    "text_to_csv": 0,
    "excel_to_csv": 0,
    "xml_to_json": 0,
    "qr_generator": 0,
}


def parse_tier(tier: Union[SubscriptionTier, str]) -> SubscriptionTier:
    """Coerce a tier name to SubscriptionTier, raising UnknownTierError."""
    if isinstance(tier, SubscriptionTier):
        return tier
    try:
        return SubscriptionTier(tier)
    except ValueError:
        raise UnknownTierError(f"Unknown subscription tier: {tier!r}") from None


def get_tier_limits(tier: Union[SubscriptionTier, str]) -> TierLimits:
    """Look up limits for a tier (enum member or its string value)."""
    return TIER_LIMITS[parse_tier(tier)]


def get_file_expiry(tier: Union[SubscriptionTier, str], now: datetime) -> datetime:
    """Absolute expiry for a file uploaded at `now` by a user on `tier`."""
    return now + timedelta(hours=get_tier_limits(tier).file_retention_hours)


def get_tool_credit_cost(tool: str) -> int:
    """Credits charged for a tool; unknown tools cost nothing."""
    return TOOL_CREDIT_COSTS.get(tool, 0)

"""
QuotaLedger - per-user credit quotas with daily and monthly resets.

Every billable operation reserves its credits here before it runs.

Key Features:
- O(1) admission check against counters on the users row (never the usage log)
- Lazy resets: a counter whose last_credit_reset predates the current day
  (or month) is treated as zero and the reset is persisted with the next
  successful reservation
- Read-test-write happens in ONE conditional UPDATE, so two concurrent
  requests for the same user can never both be admitted past the limit
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone, tzinfo
from enum import Enum as PyEnum
from typing import Optional, Tuple, Dict, Any
from zoneinfo import ZoneInfo

from sqlalchemy import select, update, case, or_

from docforge_core.config import CoreConfig, core_config
from docforge_core.db import DatabaseManager, db
from docforge_core.models import UserModel, SubscriptionTier, as_utc
from docforge_core.services.catalog import TierLimits, get_tier_limits, parse_tier
from docforge_core.services.clock import Clock, system_clock

logger = logging.getLogger(__name__)


class LimitKind(str, PyEnum):
    """Which quota a denied reservation would have exceeded."""

    DAILY = "daily"
    MONTHLY = "monthly"


class ReservationError(str, PyEnum):
    """Why a reservation was denied."""

    QUOTA_EXCEEDED = "quota_exceeded"
    USER_NOT_FOUND = "user_not_found"
    CONFLICT = "conflict"


_UPGRADE_TARGET = {
    SubscriptionTier.FREE: "Pro",
    SubscriptionTier.PRO: "Enterprise",
}


@dataclass
class ReservationResult:
    """Result of a credit reservation."""

    allowed: bool
    reason: Optional[str] = None
    error: Optional[ReservationError] = None
    limit_kind: Optional[LimitKind] = None
    limit: Optional[int] = None  # value of the breached limit
    credits_used_today: Optional[int] = None
    credits_used_month: Optional[int] = None


@dataclass
class CreditStatus:
    """Effective credit usage for display; computing it never persists a reset."""

    user_id: str
    tier: str
    daily_limit: int  # -1 = unlimited
    monthly_limit: int
    credits_used_today: int
    credits_used_month: int
    remaining_today: Optional[int]  # None = unlimited
    remaining_month: Optional[int]
    percentage_used_today: float
    percentage_used_month: float
    last_credit_reset: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "tier": self.tier,
            "daily_limit": self.daily_limit,
            "monthly_limit": self.monthly_limit,
            "credits_used_today": self.credits_used_today,
            "credits_used_month": self.credits_used_month,
            "remaining_today": self.remaining_today,
            "remaining_month": self.remaining_month,
            "percentage_used_today": self.percentage_used_today,
            "percentage_used_month": self.percentage_used_month,
            "last_credit_reset": (
                self.last_credit_reset.isoformat() if self.last_credit_reset else None
            ),
        }


def period_boundaries(now: datetime, tz: tzinfo) -> Tuple[datetime, datetime]:
    """
    Start of the current day and calendar month in `tz`, returned in UTC.

    Args:
        now: Current instant (timezone-aware)
        tz: Reference timezone for the ledger

    Returns:
        (day_start, month_start) as UTC datetimes
    """
    local = now.astimezone(tz)
    day_start = local.replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = day_start.replace(day=1)
    return day_start.astimezone(timezone.utc), month_start.astimezone(timezone.utc)


def effective_counters(
    credits_used_today: int,
    credits_used_month: int,
    last_credit_reset: Optional[datetime],
    day_start: datetime,
    month_start: datetime,
) -> Tuple[int, int]:
    """
    Apply any pending day/month reset to the stored counters.

    The two resets are independent: crossing midnight zeroes the daily
    counter only; the monthly one resets only when the month changed too.
    A missing last_credit_reset counts as "never".
    """
    if last_credit_reset is None:
        return 0, 0
    last = as_utc(last_credit_reset)
    daily = 0 if last < day_start else credits_used_today
    monthly = 0 if last < month_start else credits_used_month
    return daily, monthly


def _percentage(used: int, limit: int) -> float:
    if limit <= 0:
        return 0.0
    return round(used / limit * 100, 2)


class QuotaLedger:
    """
    Owns credits_used_today, credits_used_month and last_credit_reset.

    No other component writes these columns.
    """

    def __init__(
        self,
        database: Optional[DatabaseManager] = None,
        clock: Optional[Clock] = None,
        config: Optional[CoreConfig] = None,
    ):
        config = config or core_config
        self._db = database or db
        self._clock = clock or system_clock
        self._tz = ZoneInfo(config.QUOTA_TIMEZONE)
        self._max_attempts = config.QUOTA_MAX_ATTEMPTS

    async def reserve(self, user_id: str, credits_needed: int) -> ReservationResult:
        """
        Atomically reserve credits for a billable operation.

        Free tools pass 0 and are admitted without touching any state.

        Args:
            user_id: User ID
            credits_needed: Credits the operation costs (>= 0)

        Returns:
            ReservationResult; on denial, limit_kind names the breached quota
        """
        if credits_needed < 0:
            raise ValueError(f"credits_needed must be >= 0, got {credits_needed}")
        if credits_needed == 0:
            return ReservationResult(allowed=True)

        now = as_utc(self._clock.now())
        day_start, month_start = period_boundaries(now, self._tz)

        async with self._db.session() as session:
            state = await self._load_credit_state(session, user_id)

            for attempt in range(1, self._max_attempts + 1):
                if state is None:
                    logger.warning(f"Credit reservation for unknown user: {user_id}")
                    return ReservationResult(
                        allowed=False,
                        reason="User not found",
                        error=ReservationError.USER_NOT_FOUND,
                    )

                tier = parse_tier(state.subscription_tier)
                limits = get_tier_limits(tier)

                stmt = self._conditional_increment(
                    user_id, tier, limits, credits_needed, now, day_start, month_start
                )
                result = await session.execute(stmt)

                if result.rowcount == 1:
                    counters = await self._load_credit_state(session, user_id)
                    logger.debug(
                        f"Reserved {credits_needed} credits for user {user_id}: "
                        f"today={counters.credits_used_today}, month={counters.credits_used_month}"
                    )
                    return ReservationResult(
                        allowed=True,
                        credits_used_today=counters.credits_used_today,
                        credits_used_month=counters.credits_used_month,
                    )

                # Guard failed: either a limit is breached or the row changed
                # (tier switched, user removed) between our read and write.
                state = await self._load_credit_state(session, user_id)
                if state is None or state.subscription_tier != tier.value:
                    continue

                daily, monthly = effective_counters(
                    state.credits_used_today,
                    state.credits_used_month,
                    state.last_credit_reset,
                    day_start,
                    month_start,
                )
                breached = self._breached_limit(limits, daily, monthly, credits_needed)
                if breached is not None:
                    kind, limit = breached
                    logger.info(
                        f"Credit reservation denied for user {user_id}: "
                        f"{kind.value} limit {limit}, requested {credits_needed}"
                    )
                    return ReservationResult(
                        allowed=False,
                        reason=self._denial_message(tier, kind, limit),
                        error=ReservationError.QUOTA_EXCEEDED,
                        limit_kind=kind,
                        limit=limit,
                        credits_used_today=daily,
                        credits_used_month=monthly,
                    )

                logger.debug(
                    f"Credit reservation for user {user_id} raced a concurrent update "
                    f"(attempt {attempt}), retrying"
                )

        logger.warning(
            f"Credit reservation for user {user_id} gave up after {self._max_attempts} attempts"
        )
        return ReservationResult(
            allowed=False,
            reason="Credit reservation conflicted with a concurrent update. Please retry.",
            error=ReservationError.CONFLICT,
        )

    async def get_credit_status(self, user_id: str) -> Optional[CreditStatus]:
        """
        Get effective usage, limits and remaining credits for a user.

        Returns:
            CreditStatus, or None if the user does not exist
        """
        now = as_utc(self._clock.now())
        day_start, month_start = period_boundaries(now, self._tz)

        async with self._db.session() as session:
            state = await self._load_credit_state(session, user_id)

        if state is None:
            return None

        limits = get_tier_limits(state.subscription_tier)
        daily, monthly = effective_counters(
            state.credits_used_today,
            state.credits_used_month,
            state.last_credit_reset,
            day_start,
            month_start,
        )
        return CreditStatus(
            user_id=user_id,
            tier=state.subscription_tier,
            daily_limit=limits.daily_credits,
            monthly_limit=limits.monthly_credits,
            credits_used_today=daily,
            credits_used_month=monthly,
            remaining_today=(
                None if limits.is_daily_unlimited else max(0, limits.daily_credits - daily)
            ),
            remaining_month=(
                None
                if limits.is_monthly_unlimited
                else max(0, limits.monthly_credits - monthly)
            ),
            percentage_used_today=_percentage(daily, limits.daily_credits),
            percentage_used_month=_percentage(monthly, limits.monthly_credits),
            last_credit_reset=(
                as_utc(state.last_credit_reset) if state.last_credit_reset else None
            ),
        )

    async def _load_credit_state(self, session, user_id: str):
        """Read the credit columns directly (bypasses the identity map)."""
        stmt = select(
            UserModel.subscription_tier,
            UserModel.credits_used_today,
            UserModel.credits_used_month,
            UserModel.last_credit_reset,
        ).where(UserModel.id == user_id)
        result = await session.execute(stmt)
        return result.first()

    @staticmethod
    def _conditional_increment(
        user_id: str,
        tier: SubscriptionTier,
        limits: TierLimits,
        credits_needed: int,
        now: datetime,
        day_start: datetime,
        month_start: datetime,
    ):
        """
        Build the guarded UPDATE.

        The CASE expressions compute the effective (possibly reset) counters
        from the pre-update row; the WHERE clause applies the admission test
        to the same values. Unlimited limits add no guard.
        """
        daily_reset = or_(
            UserModel.last_credit_reset.is_(None),
            UserModel.last_credit_reset < day_start,
        )
        monthly_reset = or_(
            UserModel.last_credit_reset.is_(None),
            UserModel.last_credit_reset < month_start,
        )
        effective_daily = case((daily_reset, 0), else_=UserModel.credits_used_today)
        effective_monthly = case((monthly_reset, 0), else_=UserModel.credits_used_month)

        stmt = (
            update(UserModel)
            .where(
                UserModel.id == user_id,
                UserModel.subscription_tier == tier.value,
            )
            .values(
                credits_used_today=effective_daily + credits_needed,
                credits_used_month=effective_monthly + credits_needed,
                last_credit_reset=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if not limits.is_daily_unlimited:
            stmt = stmt.where(effective_daily + credits_needed <= limits.daily_credits)
        if not limits.is_monthly_unlimited:
            stmt = stmt.where(
                effective_monthly + credits_needed <= limits.monthly_credits
            )
        return stmt

    @staticmethod
    def _breached_limit(
        limits: TierLimits, daily: int, monthly: int, credits_needed: int
    ) -> Optional[Tuple[LimitKind, int]]:
        """Return the first limit the reservation would exceed (daily before monthly)."""
        if not limits.is_daily_unlimited and daily + credits_needed > limits.daily_credits:
            return LimitKind.DAILY, limits.daily_credits
        if (
            not limits.is_monthly_unlimited
            and monthly + credits_needed > limits.monthly_credits
        ):
            return LimitKind.MONTHLY, limits.monthly_credits
        return None

    @staticmethod
    def _denial_message(tier: SubscriptionTier, kind: LimitKind, limit: int) -> str:
        message = f"{kind.value.capitalize()} credit limit ({limit}) reached."
        upgrade = _UPGRADE_TARGET.get(tier)
        if upgrade:
            message += f" Upgrade to {upgrade} for more credits."
        return message


# Singleton instance
quota_ledger = QuotaLedger()

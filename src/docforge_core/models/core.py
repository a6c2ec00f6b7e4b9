"""
Core models: Users.

The user row carries the subscription tier (written by the billing
collaborator) and the credit counters (written only by the quota ledger).
"""

from datetime import datetime
from typing import Optional, List, Dict, Any, TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import String, Integer, DateTime, CheckConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docforge_core.models.base import Base, utc_now

if TYPE_CHECKING:
    from docforge_core.models.files import FileModel


class UserModel(Base):
    """
    User table with subscription tier and credit usage counters.

    credits_used_today / credits_used_month are only meaningful together with
    last_credit_reset: a counter whose reset timestamp predates the current
    day (or month) is logically zero.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True)
    display_name: Mapped[Optional[str]] = mapped_column(String(255))
    role: Mapped[str] = mapped_column(String(20), default="user", nullable=False)
    subscription_tier: Mapped[str] = mapped_column(
        String(20), default="free", nullable=False
    )

    # Credit ledger state (owned by QuotaLedger)
    credits_used_today: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    credits_used_month: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False
    )
    last_credit_reset: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    # Relationships
    # No delete cascade; files leave through FileLifecycleManager
    files: Mapped[List["FileModel"]] = relationship(
        back_populates="owner", passive_deletes="all"
    )

    __table_args__ = (
        CheckConstraint(
            "subscription_tier IN ('free', 'pro', 'enterprise')",
            name="chk_users_subscription_tier",
        ),
        CheckConstraint("role IN ('user', 'admin')", name="chk_users_role"),
        CheckConstraint(
            "credits_used_today >= 0 AND credits_used_month >= 0",
            name="chk_users_credits_non_negative",
        ),
        Index("idx_users_subscription_tier", "subscription_tier"),
        Index("idx_users_created_at", "created_at"),
    )

    def __repr__(self):
        return f"<User(id='{self.id}', tier='{self.subscription_tier}')>"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "role": self.role,
            "subscription_tier": self.subscription_tier,
            "credits_used_today": self.credits_used_today,
            "credits_used_month": self.credits_used_month,
            "last_credit_reset": (
                self.last_credit_reset.isoformat() if self.last_credit_reset else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

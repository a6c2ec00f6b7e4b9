"""
SQLAlchemy model for usage records.

Tables:
- usage_records: Append-only log of attempted billable operations (analytics and audit)

Quota decisions never read this table; the counters on the users row are the
source of truth for admission.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from uuid import uuid4

from sqlalchemy import (
    String,
    Text,
    Integer,
    Boolean,
    DateTime,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column

from docforge_core.models.base import Base, JSONType, utc_now


class UsageRecordModel(Base):
    """
    One row per attempted billable operation.

    Rows are never updated after insert. user_id carries no foreign key;
    records outlive the user they belong to.
    """

    __tablename__ = "usage_records"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(String(36), nullable=False)

    # Idempotency key
    request_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True)

    # Usage details
    tool: Mapped[str] = mapped_column(String(64), nullable=False)  # ai_summary, pdf_merge, ...
    credits_charged: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer)
    error_message: Mapped[Optional[str]] = mapped_column(Text)

    # Token counts for AI tools
    input_tokens: Mapped[Optional[int]] = mapped_column(Integer)
    output_tokens: Mapped[Optional[int]] = mapped_column(Integer)

    # Metadata (named extra_metadata to avoid SQLAlchemy reserved name conflict)
    extra_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        Index("idx_usage_records_user_id", "user_id"),
        Index("idx_usage_records_created_at", "created_at"),
        Index("idx_usage_records_user_created", "user_id", "created_at"),
        Index("idx_usage_records_tool_created", "tool", "created_at"),
    )

    def __repr__(self):
        return f"<UsageRecord(tool='{self.tool}', credits={self.credits_charged})>"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "request_id": self.request_id,
            "tool": self.tool,
            "credits_charged": self.credits_charged,
            "success": self.success,
            "processing_time_ms": self.processing_time_ms,
            "error_message": self.error_message,
            "input_tokens": self.input_tokens,
            "output_tokens": self.output_tokens,
            "metadata": self.extra_metadata,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


__all__ = [
    "UsageRecordModel",
]

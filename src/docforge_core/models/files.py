"""
File model for uploaded and processed files.

File bytes live in object storage; this table stores metadata and the
lifecycle state of each upload and its derived output.
"""

from datetime import datetime
from typing import Optional, Dict, Any, TYPE_CHECKING
from uuid import uuid4

from sqlalchemy import (
    String,
    Text,
    BigInteger,
    DateTime,
    ForeignKey,
    CheckConstraint,
    Index,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from docforge_core.models.base import Base, JSONType, utc_now

if TYPE_CHECKING:
    from docforge_core.models.core import UserModel


class FileModel(Base):
    """
    Files table.

    status moves pending -> processing -> completed|failed, and from any
    non-deleted state to deleted. expires_at is set once at creation.
    """

    __tablename__ = "files"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid4())
    )
    user_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    storage_path: Mapped[str] = mapped_column(Text, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(255), nullable=False)
    file_size: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tool_used: Mapped[Optional[str]] = mapped_column(String(64))
    status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    output_path: Mapped[Optional[str]] = mapped_column(Text)
    output_name: Mapped[Optional[str]] = mapped_column(String(255))
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    extra_metadata: Mapped[Dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    # Relationships
    owner: Mapped["UserModel"] = relationship(back_populates="files")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'deleted')",
            name="chk_files_status",
        ),
        Index("idx_files_user_id", "user_id"),
        Index("idx_files_expires_at", "expires_at"),
        Index("idx_files_status", "status"),
        Index("idx_files_status_expires", "status", "expires_at"),
    )

    def __repr__(self):
        return f"<File(id='{self.id}', status='{self.status}')>"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "original_name": self.original_name,
            "storage_path": self.storage_path,
            "mime_type": self.mime_type,
            "file_size": self.file_size,
            "tool_used": self.tool_used,
            "status": self.status,
            "output_path": self.output_path,
            "output_name": self.output_name,
            "error_message": self.error_message,
            "metadata": self.extra_metadata,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

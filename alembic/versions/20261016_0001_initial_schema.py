"""Initial schema for docforge_core

Creates all tables for:
- Core: users (subscription tier + credit counters)
- Files: files (upload/output lifecycle with expiry)
- Usage: usage_records (append-only usage log)

Revision ID: 001
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # ==========================================================================
    # CORE TABLES
    # ==========================================================================

    # Users table
    op.create_table(
        "users",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("email", sa.String(255), unique=True),
        sa.Column("display_name", sa.String(255)),
        sa.Column("role", sa.String(20), server_default="user", nullable=False),
        sa.Column(
            "subscription_tier", sa.String(20), server_default="free", nullable=False
        ),
        sa.Column("credits_used_today", sa.Integer, server_default="0", nullable=False),
        sa.Column("credits_used_month", sa.Integer, server_default="0", nullable=False),
        sa.Column("last_credit_reset", postgresql.TIMESTAMP(timezone=True)),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "subscription_tier IN ('free', 'pro', 'enterprise')",
            name="chk_users_subscription_tier",
        ),
        sa.CheckConstraint("role IN ('user', 'admin')", name="chk_users_role"),
        sa.CheckConstraint(
            "credits_used_today >= 0 AND credits_used_month >= 0",
            name="chk_users_credits_non_negative",
        ),
    )
    op.create_index("idx_users_subscription_tier", "users", ["subscription_tier"])
    op.create_index("idx_users_created_at", "users", ["created_at"])

    # ==========================================================================
    # FILE TABLES
    # ==========================================================================

    op.create_table(
        "files",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "user_id",
            sa.String(36),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("original_name", sa.String(255), nullable=False),
        sa.Column("storage_path", sa.Text, nullable=False),
        sa.Column("mime_type", sa.String(255), nullable=False),
        sa.Column("file_size", sa.BigInteger, nullable=False),
        sa.Column("tool_used", sa.String(64)),
        sa.Column("status", sa.String(20), server_default="pending", nullable=False),
        sa.Column("output_path", sa.Text),
        sa.Column("output_name", sa.String(255)),
        sa.Column("error_message", sa.Text),
        sa.Column("expires_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("deleted_at", postgresql.TIMESTAMP(timezone=True)),
        sa.Column("metadata", postgresql.JSONB, server_default="{}", nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'deleted')",
            name="chk_files_status",
        ),
    )
    op.create_index("idx_files_user_id", "files", ["user_id"])
    op.create_index("idx_files_expires_at", "files", ["expires_at"])
    op.create_index("idx_files_status", "files", ["status"])
    op.create_index("idx_files_status_expires", "files", ["status", "expires_at"])

    # ==========================================================================
    # USAGE TABLES
    # ==========================================================================

    op.create_table(
        "usage_records",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(36), nullable=False),
        sa.Column("request_id", sa.String(100), unique=True),
        sa.Column("tool", sa.String(64), nullable=False),
        sa.Column("credits_charged", sa.Integer, server_default="0", nullable=False),
        sa.Column("success", sa.Boolean, server_default="true", nullable=False),
        sa.Column("processing_time_ms", sa.Integer),
        sa.Column("error_message", sa.Text),
        sa.Column("input_tokens", sa.Integer),
        sa.Column("output_tokens", sa.Integer),
        sa.Column("metadata", postgresql.JSONB, server_default="{}", nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("idx_usage_records_user_id", "usage_records", ["user_id"])
    op.create_index("idx_usage_records_created_at", "usage_records", ["created_at"])
    op.create_index(
        "idx_usage_records_user_created", "usage_records", ["user_id", "created_at"]
    )
    op.create_index(
        "idx_usage_records_tool_created", "usage_records", ["tool", "created_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_usage_records_tool_created", table_name="usage_records")
    op.drop_index("idx_usage_records_user_created", table_name="usage_records")
    op.drop_index("idx_usage_records_created_at", table_name="usage_records")
    op.drop_index("idx_usage_records_user_id", table_name="usage_records")
    op.drop_table("usage_records")

    op.drop_index("idx_files_status_expires", table_name="files")
    op.drop_index("idx_files_status", table_name="files")
    op.drop_index("idx_files_expires_at", table_name="files")
    op.drop_index("idx_files_user_id", table_name="files")
    op.drop_table("files")

    op.drop_index("idx_users_created_at", table_name="users")
    op.drop_index("idx_users_subscription_tier", table_name="users")
    op.drop_table("users")

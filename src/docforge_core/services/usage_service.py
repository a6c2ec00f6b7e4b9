"""
UsageRecorder - append-only usage log for analytics and audit.

Key Features:
- One immutable row per attempted billable operation (success or failure)
- Non-blocking: write failures are retried with exponential backoff
  (tenacity), then logged and dropped; they never reach the caller or
  affect the operation's outcome
- Idempotent logging via request_id
- Read-side aggregates for the admin/analytics surface

Quota admission never reads this log; see QuotaLedger.
"""

import logging
from datetime import datetime
from typing import Optional, Dict, Any, List
from uuid import uuid4

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from docforge_core.config import CoreConfig, core_config
from docforge_core.db import DatabaseManager, db
from docforge_core.models import UsageRecordModel, as_utc

logger = logging.getLogger(__name__)


class UsageRecorder:
    """Writes and aggregates usage records; never updates or deletes them."""

    def __init__(
        self,
        database: Optional[DatabaseManager] = None,
        config: Optional[CoreConfig] = None,
    ):
        config = config or core_config
        self._db = database or db
        self._max_attempts = config.USAGE_LOG_MAX_ATTEMPTS
        self._retry_wait = config.USAGE_LOG_RETRY_WAIT_SECONDS
        self._retry_max_wait = config.USAGE_LOG_RETRY_MAX_WAIT_SECONDS

    async def record(
        self,
        user_id: str,
        tool: str,
        credits_charged: int,
        success: bool,
        timing_ms: Optional[int] = None,
        error: Optional[str] = None,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        request_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[str]:
        """
        Log the outcome of a billable operation.

        Non-blocking - failures are logged but don't propagate.

        Args:
            user_id: User ID
            tool: Tool tag (e.g., "ai_summary", "pdf_merge"); not interpreted
            credits_charged: Credits reserved for the operation
            success: Whether the operation succeeded
            timing_ms: Processing time in milliseconds
            error: Error message for failed operations
            input_tokens: Input tokens (AI tools)
            output_tokens: Output tokens (AI tools)
            request_id: Unique request ID for deduplication
            metadata: Additional metadata

        Returns:
            Record ID if successful (or already recorded), None otherwise
        """
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self._max_attempts),
                wait=wait_exponential(multiplier=self._retry_wait, max=self._retry_max_wait),
                retry=retry_if_not_exception_type(IntegrityError),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    return await self._insert(
                        user_id=user_id,
                        request_id=request_id,
                        tool=tool,
                        credits_charged=credits_charged,
                        success=success,
                        processing_time_ms=timing_ms,
                        error_message=error,
                        input_tokens=input_tokens,
                        output_tokens=output_tokens,
                        extra_metadata=metadata or {},
                    )
        except IntegrityError as e:
            if request_id is not None:
                existing = await self._find_by_request_id(request_id)
                if existing is not None:
                    logger.debug(f"Usage already recorded for request {request_id}")
                    return existing
            logger.warning(f"Failed to log usage: {e}")
        except Exception as e:
            # Non-blocking - log and drop
            logger.warning(f"Failed to log usage after {self._max_attempts} attempts: {e}")

        logger.warning(
            f"Dropped usage record: user={user_id}, tool={tool}, credits={credits_charged}"
        )
        return None

    async def _insert(self, **values: Any) -> str:
        async with self._db.session() as session:
            record = UsageRecordModel(id=str(uuid4()), **values)
            session.add(record)
            await session.flush()
            logger.debug(
                f"Logged usage: user={record.user_id}, tool={record.tool}, "
                f"credits={record.credits_charged}, success={record.success}"
            )
            return record.id

    async def _find_by_request_id(self, request_id: str) -> Optional[str]:
        try:
            async with self._db.session() as session:
                return await session.scalar(
                    select(UsageRecordModel.id).where(
                        UsageRecordModel.request_id == request_id
                    )
                )
        except Exception as e:
            logger.warning(f"Failed to look up usage record {request_id}: {e}")
            return None

    async def get_user_usage(self, user_id: str, limit: int = 100) -> List[UsageRecordModel]:
        """Most recent usage records for a user, newest first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(UsageRecordModel)
                .where(UsageRecordModel.user_id == user_id)
                .order_by(UsageRecordModel.created_at.desc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def get_credits_used_since(
        self, since: datetime, user_id: Optional[str] = None
    ) -> int:
        """Sum of credits_charged on records created at or after `since`."""
        stmt = select(
            func.coalesce(func.sum(UsageRecordModel.credits_charged), 0)
        ).where(UsageRecordModel.created_at >= as_utc(since))
        if user_id is not None:
            stmt = stmt.where(UsageRecordModel.user_id == user_id)

        async with self._db.session() as session:
            result = await session.execute(stmt)
            return int(result.scalar() or 0)

    async def get_usage_summary(
        self, since: datetime, user_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Aggregate usage since a point in time.

        Returns:
            Dict with total_requests, successful_requests, failed_requests,
            total_credits and a per-tool breakdown
        """
        filters = [UsageRecordModel.created_at >= as_utc(since)]
        if user_id is not None:
            filters.append(UsageRecordModel.user_id == user_id)

        success_count = func.sum(case((UsageRecordModel.success.is_(True), 1), else_=0))
        stmt = (
            select(
                UsageRecordModel.tool,
                func.count(UsageRecordModel.id),
                success_count,
                func.coalesce(func.sum(UsageRecordModel.credits_charged), 0),
            )
            .where(*filters)
            .group_by(UsageRecordModel.tool)
        )

        async with self._db.session() as session:
            result = await session.execute(stmt)
            rows = result.all()

        breakdown = {}
        for tool, requests, successes, credits in rows:
            breakdown[tool] = {
                "requests": int(requests),
                "successful": int(successes or 0),
                "failed": int(requests) - int(successes or 0),
                "credits": int(credits or 0),
            }

        total_requests = sum(b["requests"] for b in breakdown.values())
        successful = sum(b["successful"] for b in breakdown.values())
        return {
            "user_id": user_id,
            "since": as_utc(since).isoformat(),
            "total_requests": total_requests,
            "successful_requests": successful,
            "failed_requests": total_requests - successful,
            "total_credits": sum(b["credits"] for b in breakdown.values()),
            "breakdown_by_tool": breakdown,
        }


# Singleton instance
usage_recorder = UsageRecorder()

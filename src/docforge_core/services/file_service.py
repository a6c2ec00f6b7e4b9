"""
FileLifecycleManager - state transitions and deletion of uploaded files.

State machine:
    pending -> processing -> completed | failed
    pending -> failed
    any non-deleted state -> deleted (terminal)

Every transition is a conditional UPDATE guarded on the expected prior
status, so when two workers race on the same file exactly one wins and the
other gets INVALID_TRANSITION back instead of silently overwriting.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum as PyEnum
from pathlib import PurePath
from typing import Optional, List, Dict, Any, Sequence
from uuid import uuid4

from sqlalchemy import delete as sa_delete, select, update

from docforge_core.config import CoreConfig, core_config
from docforge_core.db import DatabaseManager, db
from docforge_core.exceptions import (
    FileAccessDeniedError,
    FileLifecycleError,
    FileRecordNotFoundError,
    InvalidTransitionError,
    StorageError,
    StoragePathError,
)
from docforge_core.models import FileModel, FileStatus, UserModel, as_utc
from docforge_core.services.catalog import get_file_expiry
from docforge_core.services.clock import Clock, system_clock
from docforge_core.storage import LocalFileStorage, ObjectStorage

logger = logging.getLogger(__name__)


class LifecycleError(str, PyEnum):
    NOT_FOUND = "not_found"
    INVALID_TRANSITION = "invalid_transition"
    FORBIDDEN = "forbidden"
    STORAGE_ERROR = "storage_error"
    CONFLICT = "conflict"


_ERROR_EXCEPTIONS = {
    LifecycleError.NOT_FOUND: FileRecordNotFoundError,
    LifecycleError.INVALID_TRANSITION: InvalidTransitionError,
    LifecycleError.FORBIDDEN: FileAccessDeniedError,
    LifecycleError.STORAGE_ERROR: StorageError,
    LifecycleError.CONFLICT: FileLifecycleError,
}

# Statuses each target may be entered from (deleted is handled by delete())
ALLOWED_SOURCES: Dict[FileStatus, Sequence[FileStatus]] = {
    FileStatus.PROCESSING: (FileStatus.PENDING,),
    FileStatus.COMPLETED: (FileStatus.PROCESSING,),
    FileStatus.FAILED: (FileStatus.PENDING, FileStatus.PROCESSING),
}


@dataclass
class FileOperationResult:
    """Outcome of a lifecycle operation."""

    ok: bool
    file_id: Optional[str]
    status: Optional[FileStatus] = None
    error: Optional[LifecycleError] = None
    message: Optional[str] = None
    file: Optional[FileModel] = None

    def raise_for_error(self) -> None:
        """Raise the exception matching `error`, if any."""
        if self.ok or self.error is None:
            return
        exc_class = _ERROR_EXCEPTIONS[self.error]
        if exc_class is StorageError:
            raise StorageError(self.message)
        raise exc_class(self.message, file_id=self.file_id)


class FileLifecycleManager:
    """
    Owns status, output_path, output_name, error_message and deleted_at on
    file records. expires_at is written once by create() and never updated.
    """

    DELETE_MAX_ATTEMPTS = 3

    def __init__(
        self,
        database: Optional[DatabaseManager] = None,
        storage: Optional[ObjectStorage] = None,
        clock: Optional[Clock] = None,
        config: Optional[CoreConfig] = None,
    ):
        config = config or core_config
        self._db = database or db
        self.storage = storage or LocalFileStorage(config.STORAGE_ROOT)
        self._clock = clock or system_clock

    def _now(self) -> datetime:
        return as_utc(self._clock.now())

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create(
        self,
        owner_id: str,
        storage_path: str,
        mime_type: str,
        file_size: int,
        expires_at: datetime,
        original_name: Optional[str] = None,
        tool_used: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        file_id: Optional[str] = None,
    ) -> FileModel:
        """
        Register an already-stored object as a new file in `pending`.

        Args:
            owner_id: Owning user ID
            storage_path: Object storage path of the upload
            mime_type: MIME type of the upload
            file_size: Size in bytes
            expires_at: Absolute expiry; fixed for the life of the record
            original_name: Display name (defaults to the storage path's basename)
            tool_used: Opaque tool tag
            metadata: Tool-specific data
            file_id: Explicit ID (generated if omitted)

        Returns:
            The persisted FileModel

        Raises:
            StoragePathError: storage_path is not addressable by the storage backend
        """
        if file_size < 0:
            raise ValueError(f"file_size must be >= 0, got {file_size}")
        self.storage.validate_path(storage_path)

        file = FileModel(
            id=file_id or str(uuid4()),
            user_id=owner_id,
            original_name=original_name or PurePath(storage_path).name,
            storage_path=storage_path,
            mime_type=mime_type,
            file_size=file_size,
            tool_used=tool_used,
            status=FileStatus.PENDING.value,
            expires_at=as_utc(expires_at),
            extra_metadata=metadata or {},
        )
        async with self._db.session() as session:
            session.add(file)
            await session.flush()

        logger.info(
            f"Created file {file.id} for user {owner_id}: {file.original_name} "
            f"({file_size} bytes), expires {file.expires_at.isoformat()}"
        )
        return file

    async def upload(
        self,
        owner_id: str,
        original_name: str,
        data: bytes,
        mime_type: str,
        tool_used: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> FileOperationResult:
        """
        Store bytes and create the file record in one step.

        Expiry comes from the owner's tier retention. If the record cannot be
        written the stored object is removed again before the error propagates.
        """
        async with self._db.session() as session:
            tier = await session.scalar(
                select(UserModel.subscription_tier).where(UserModel.id == owner_id)
            )
        if tier is None:
            logger.warning(f"Upload for unknown user: {owner_id}")
            return FileOperationResult(
                ok=False,
                file_id=None,
                error=LifecycleError.NOT_FOUND,
                message="User not found",
            )

        file_id = str(uuid4())
        safe_name = PurePath(original_name).name or "upload"
        storage_path = f"{owner_id}/{file_id}-{safe_name}"
        expires_at = get_file_expiry(tier, self._now())

        try:
            await self.storage.put(storage_path, data)
        except StorageError as e:
            logger.warning(f"Failed to store upload for user {owner_id}: {e}")
            return FileOperationResult(
                ok=False,
                file_id=None,
                error=LifecycleError.STORAGE_ERROR,
                message=str(e),
            )

        try:
            file = await self.create(
                owner_id=owner_id,
                storage_path=storage_path,
                mime_type=mime_type,
                file_size=len(data),
                expires_at=expires_at,
                original_name=original_name,
                tool_used=tool_used,
                metadata=metadata,
                file_id=file_id,
            )
        except Exception:
            try:
                await self.storage.delete(storage_path)
            except StorageError as cleanup_error:
                logger.error(
                    f"Orphaned upload {storage_path} after failed create: {cleanup_error}"
                )
            raise

        return FileOperationResult(
            ok=True, file_id=file.id, status=FileStatus.PENDING, file=file
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def transition_to_processing(self, file_id: str) -> FileOperationResult:
        """pending -> processing; rejects double starts."""
        return await self._transition(file_id, FileStatus.PROCESSING, {})

    async def complete(
        self, file_id: str, output_path: str, output_name: Optional[str] = None
    ) -> FileOperationResult:
        """processing -> completed, recording the derived output."""
        try:
            self.storage.validate_path(output_path)
        except StoragePathError as e:
            logger.error(f"Rejected output path for file {file_id}: {e}")
            return FileOperationResult(
                ok=False,
                file_id=file_id,
                error=LifecycleError.STORAGE_ERROR,
                message=str(e),
            )
        return await self._transition(
            file_id,
            FileStatus.COMPLETED,
            {"output_path": output_path, "output_name": output_name},
        )

    async def fail(self, file_id: str, reason: Optional[str] = None) -> FileOperationResult:
        """
        pending|processing -> failed.

        The source upload stays in storage so the job can be retried
        without re-uploading; expiry still reclaims it.
        """
        return await self._transition(
            file_id, FileStatus.FAILED, {"error_message": reason}
        )

    async def _transition(
        self, file_id: str, target: FileStatus, values: Dict[str, Any]
    ) -> FileOperationResult:
        expected = ALLOWED_SOURCES[target]
        now = self._now()

        async with self._db.session() as session:
            stmt = (
                update(FileModel)
                .where(
                    FileModel.id == file_id,
                    FileModel.status.in_([s.value for s in expected]),
                )
                .values(status=target.value, updated_at=now, **values)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            if result.rowcount == 1:
                logger.debug(f"File {file_id} -> {target.value}")
                return FileOperationResult(ok=True, file_id=file_id, status=target)

            current = await session.scalar(
                select(FileModel.status).where(FileModel.id == file_id)
            )

        if current is None:
            logger.warning(f"Transition to {target.value} for unknown file: {file_id}")
            return FileOperationResult(
                ok=False,
                file_id=file_id,
                error=LifecycleError.NOT_FOUND,
                message="File not found",
            )

        message = (
            f"Cannot move file {file_id} from {current} to {target.value} "
            f"(allowed from: {', '.join(s.value for s in expected)})"
        )
        logger.error(f"Invalid file transition: {message}")
        return FileOperationResult(
            ok=False,
            file_id=file_id,
            status=FileStatus(current),
            error=LifecycleError.INVALID_TRANSITION,
            message=message,
        )

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete(
        self, file_id: str, owner_id: Optional[str] = None
    ) -> FileOperationResult:
        """
        Remove the source and any output from storage, then mark deleted.

        Idempotent: deleting an already-deleted file succeeds without doing
        anything. On storage failure the record is left as-is so a later
        sweep retries it.

        Args:
            file_id: File ID
            owner_id: When given, the file must belong to this user (manual delete)
        """
        for attempt in range(1, self.DELETE_MAX_ATTEMPTS + 1):
            async with self._db.session() as session:
                result = await session.execute(
                    select(
                        FileModel.user_id,
                        FileModel.status,
                        FileModel.storage_path,
                        FileModel.output_path,
                    ).where(FileModel.id == file_id)
                )
                row = result.first()

            if row is None:
                return FileOperationResult(
                    ok=False,
                    file_id=file_id,
                    error=LifecycleError.NOT_FOUND,
                    message="File not found",
                )
            if owner_id is not None and row.user_id != owner_id:
                logger.warning(f"User {owner_id} attempted to delete file {file_id}")
                return FileOperationResult(
                    ok=False,
                    file_id=file_id,
                    error=LifecycleError.FORBIDDEN,
                    message="Access denied",
                )
            if row.status == FileStatus.DELETED.value:
                return FileOperationResult(
                    ok=True, file_id=file_id, status=FileStatus.DELETED
                )

            try:
                await self._remove_objects(row.storage_path, row.output_path)
            except StorageError as e:
                logger.warning(f"Storage deletion failed for file {file_id}: {e}")
                return FileOperationResult(
                    ok=False,
                    file_id=file_id,
                    status=FileStatus(row.status),
                    error=LifecycleError.STORAGE_ERROR,
                    message=str(e),
                )

            # Mark deleted only if nothing changed since we read the row;
            # otherwise a new output may have been written that we haven't removed.
            now = self._now()
            output_guard = (
                FileModel.output_path.is_(None)
                if row.output_path is None
                else FileModel.output_path == row.output_path
            )
            async with self._db.session() as session:
                result = await session.execute(
                    update(FileModel)
                    .where(
                        FileModel.id == file_id,
                        FileModel.status == row.status,
                        output_guard,
                    )
                    .values(
                        status=FileStatus.DELETED.value,
                        deleted_at=now,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                marked = result.rowcount == 1

            if marked:
                logger.info(f"Deleted file {file_id} (was {row.status})")
                return FileOperationResult(
                    ok=True, file_id=file_id, status=FileStatus.DELETED
                )

            logger.debug(
                f"File {file_id} changed during delete (attempt {attempt}), re-reading"
            )

        return FileOperationResult(
            ok=False,
            file_id=file_id,
            error=LifecycleError.CONFLICT,
            message=f"File {file_id} kept changing during delete",
        )

    async def _remove_objects(
        self, storage_path: str, output_path: Optional[str]
    ) -> None:
        await self.storage.delete(storage_path)
        if output_path and output_path != storage_path:
            await self.storage.delete(output_path)

    async def purge_user_files(self, owner_id: str) -> int:
        """
        Delete all of a user's files and drop their records, tombstones included.

        Run before removing the user row; the files.user_id foreign key
        refuses the removal while any record remains. Records are dropped
        only after every object is gone.

        Returns:
            Number of file records removed

        Raises:
            FileLifecycleError / StorageError: a file could not be deleted
        """
        for file in await self.list_user_files(owner_id):
            result = await self.delete(file.id)
            result.raise_for_error()

        async with self._db.session() as session:
            result = await session.execute(
                sa_delete(FileModel)
                .where(
                    FileModel.user_id == owner_id,
                    FileModel.status == FileStatus.DELETED.value,
                )
                .execution_options(synchronize_session=False)
            )
            removed = result.rowcount

        logger.info(f"Purged {removed} file records for user {owner_id}")
        return removed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_file(
        self, file_id: str, owner_id: Optional[str] = None
    ) -> Optional[FileModel]:
        """Get a file by ID; with owner_id, files of other users read as missing."""
        async with self._db.session() as session:
            file = await session.get(FileModel, file_id)
        if file is not None and owner_id is not None and file.user_id != owner_id:
            return None
        return file

    async def list_user_files(
        self, owner_id: str, include_deleted: bool = False, limit: Optional[int] = None
    ) -> List[FileModel]:
        """A user's files, newest first."""
        stmt = select(FileModel).where(FileModel.user_id == owner_id)
        if not include_deleted:
            stmt = stmt.where(FileModel.status != FileStatus.DELETED.value)
        stmt = stmt.order_by(FileModel.created_at.desc())
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def list_expired(
        self,
        now: Optional[datetime] = None,
        limit: Optional[int] = None,
        exclude_ids: Optional[Sequence[str]] = None,
    ) -> List[str]:
        """
        IDs of files past expires_at that are not yet deleted, oldest first.

        exclude_ids skips files already attempted in the current sweep.
        """
        now = as_utc(now) if now is not None else self._now()
        stmt = select(FileModel.id).where(
            FileModel.expires_at < now,
            FileModel.status != FileStatus.DELETED.value,
        )
        if exclude_ids:
            stmt = stmt.where(FileModel.id.notin_(list(exclude_ids)))
        stmt = stmt.order_by(FileModel.expires_at, FileModel.id)
        if limit is not None:
            stmt = stmt.limit(limit)

        async with self._db.session() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


# Singleton instance
file_lifecycle_manager = FileLifecycleManager()

"""
Object storage adapter.

The lifecycle manager only puts and deletes whole objects; it never streams
or transforms content. LocalFileStorage keeps objects on disk under a root
directory; other backends implement ObjectStorage.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Union

import aiofiles
import aiofiles.os

from docforge_core.exceptions import StorageError, StoragePathError

logger = logging.getLogger(__name__)


class ObjectStorage(ABC):
    """Abstract base class for storage implementations."""

    @abstractmethod
    async def put(self, path: str, data: bytes) -> str:
        """Store data at path and return the stored path."""
        pass

    @abstractmethod
    async def open(self, path: str) -> bytes:
        """Return the object's content."""
        pass

    @abstractmethod
    async def delete(self, path: str) -> bool:
        """
        Delete the object at path.

        Returns True if an object was removed, False if none existed.
        A missing object is not an error. Raises StorageError on failure.
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check if an object exists."""
        pass

    def validate_path(self, path: str) -> str:
        """
        Raise StoragePathError if this backend could never address `path`.

        Called before a path is recorded, so that every recorded object
        stays deletable.
        """
        if not path:
            raise StoragePathError("Empty storage path")
        return path


class LocalFileStorage(ObjectStorage):
    """
    Disk-backed storage rooted at a directory.

    Paths are relative to the root; absolute paths are accepted only when
    they resolve inside it.
    """

    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    def _resolve(self, path: str) -> Path:
        if not path:
            raise StoragePathError("Empty storage path")
        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.root / candidate
        resolved = candidate.resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise StoragePathError(f"Path escapes storage root: {path}")
        return resolved

    def validate_path(self, path: str) -> str:
        self._resolve(path)
        return path

    async def put(self, path: str, data: bytes) -> str:
        target = self._resolve(path)
        try:
            await aiofiles.os.makedirs(target.parent, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)
        except OSError as e:
            raise StorageError(f"Failed to store {path}: {e}") from e
        logger.debug(f"Stored object {path} ({len(data)} bytes)")
        return path

    async def open(self, path: str) -> bytes:
        target = self._resolve(path)
        try:
            async with aiofiles.open(target, "rb") as f:
                return await f.read()
        except FileNotFoundError as e:
            raise StorageError(f"Object not found: {path}") from e
        except OSError as e:
            raise StorageError(f"Failed to read {path}: {e}") from e

    async def delete(self, path: str) -> bool:
        target = self._resolve(path)
        try:
            await aiofiles.os.remove(target)
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Failed to delete {path}: {e}") from e
        logger.debug(f"Deleted object {path}")
        return True

    async def exists(self, path: str) -> bool:
        target = self._resolve(path)
        return await aiofiles.os.path.isfile(target)

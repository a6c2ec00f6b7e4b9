"""
Exception hierarchy for docforge-core.

Service methods report expected outcomes (quota denials, invalid transitions,
missing records) as result objects; these exceptions are raised for
programming errors and by result.raise_for_error() for callers that prefer
exceptions.
"""


class DocforgeCoreError(Exception):
    """Base exception for docforge-core."""
    pass


class UnknownTierError(DocforgeCoreError, ValueError):
    """Tier name has no entry in the tier catalog."""
    pass


class FileLifecycleError(DocforgeCoreError):
    """Base exception for file lifecycle failures."""

    def __init__(self, message: str, file_id: str = None):
        super().__init__(message)
        self.file_id = file_id


class FileRecordNotFoundError(FileLifecycleError):
    """File record does not exist."""
    pass


class InvalidTransitionError(FileLifecycleError):
    """Requested status change is not allowed from the current status."""
    pass


class FileAccessDeniedError(FileLifecycleError):
    """File belongs to another user."""
    pass


class StorageError(DocforgeCoreError):
    """Base exception for object storage operations."""
    pass


class StoragePathError(StorageError):
    """Storage path escapes the storage root or is otherwise invalid."""
    pass

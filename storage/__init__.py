"""Storage driver abstraction for GuiaFlow.

Provides a uniform, id-based interface over the document store:
- GDriveDriver: Google Drive (production)
- LocalDriver: Local filesystem (tests, dry runs)

Usage:
    from storage import create_storage

    driver = create_storage("gdrive")
    driver = create_storage("local:/path/to/tree")
"""

from .base import (
    StorageDriver,
    StorageError,
    FileInfo,
    FolderInfo,
    flag_is_set,
    FOLDER_MIME_TYPE,
    PDF_MIME_TYPE,
    SORTED_FLAG,
    PROCESSED_FLAG,
)
from .local import LocalDriver


def create_storage(uri: str = "gdrive") -> StorageDriver:
    """Create a storage driver from a URI.

    Args:
        uri: One of:
            - gdrive (service account from configuration)
            - local:/path/to/folder

    Returns:
        StorageDriver instance for the specified backend

    Raises:
        ValueError: If URI format is invalid
    """
    if uri.startswith("local:"):
        return LocalDriver(uri[6:])
    elif uri == "gdrive" or uri.startswith("gdrive:"):
        from .gdrive import GDriveDriver
        return GDriveDriver()
    else:
        raise ValueError(
            f"Invalid storage URI: {uri}. "
            "Must be 'gdrive' or start with 'local:'"
        )


__all__ = [
    'StorageDriver',
    'StorageError',
    'FileInfo',
    'FolderInfo',
    'flag_is_set',
    'FOLDER_MIME_TYPE',
    'PDF_MIME_TYPE',
    'SORTED_FLAG',
    'PROCESSED_FLAG',
    'LocalDriver',
    'create_storage',
]

"""Base classes for storage drivers.

This module defines the abstract interface that all storage backends must
implement. Items are addressed by backend identifiers (Drive file ids, or
root-relative paths for the local driver), never by display path.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from guiaflow.errors import GuiaFlowError


FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
PDF_MIME_TYPE = "application/pdf"

# Per-document flags, stored on the file itself
SORTED_FLAG = "sorted"
PROCESSED_FLAG = "processed"

_TRUE_VALUES = ("1", "true")


class StorageError(GuiaFlowError):
    """Base exception for storage operations."""
    pass


def flag_is_set(properties: Optional[Dict[str, str]], flag: str) -> bool:
    """Return True if ``flag`` is set to "1" or "true" in ``properties``."""
    value = (properties or {}).get(flag)
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass
class FileInfo:
    """A document in storage.

    Attributes:
        id: Backend-specific identifier (e.g., Google Drive file ID)
        name: Filename only (no directory)
        mime_type: MIME type reported by the backend
        parents: Identifiers of the containing folders
        size: File size in bytes (optional)
        properties: String flags attached to the file itself
    """
    id: str
    name: str
    mime_type: Optional[str] = None
    parents: List[str] = field(default_factory=list)
    size: Optional[int] = None
    properties: Dict[str, str] = field(default_factory=dict)

    @property
    def is_pdf(self) -> bool:
        return self.mime_type == PDF_MIME_TYPE or self.name.lower().endswith(".pdf")

    def has_flag(self, flag: str) -> bool:
        return flag_is_set(self.properties, flag)


@dataclass
class FolderInfo:
    """A folder in storage.

    Attributes:
        id: Backend-specific identifier
        name: Folder name only (no parent path)
        parent_id: Identifier of the containing folder, if known
    """
    id: str
    name: str
    parent_id: Optional[str] = None


class StorageDriver(ABC):
    """Abstract base class for storage backends.

    Every operation is a single blocking call against the backend. Errors are
    raised as StorageError and left to the caller to handle per item.
    """

    @property
    @abstractmethod
    def display_name(self) -> str:
        """Human-readable name for this storage (e.g., 'Clientes (Google Drive)')."""
        pass

    # =========================================================================
    # Read Operations
    # =========================================================================

    @abstractmethod
    def get_folder(self, folder_id: str) -> FolderInfo:
        """Return metadata for a folder.

        Raises:
            StorageError: If the folder doesn't exist or can't be accessed
        """
        pass

    @abstractmethod
    def list_files(self, folder_id: str) -> List[FileInfo]:
        """List non-trashed files (not folders) directly inside a folder.

        Raises:
            StorageError: If the folder doesn't exist or can't be accessed
        """
        pass

    @abstractmethod
    def list_folders(self, folder_id: str) -> List[FolderInfo]:
        """List immediate non-trashed subfolders of a folder.

        Raises:
            StorageError: If the folder doesn't exist or can't be accessed
        """
        pass

    def find_folders_by_name(self, parent_id: str, name: str) -> List[FolderInfo]:
        """List subfolders of ``parent_id`` whose name equals ``name`` exactly.

        Backends that support server-side name queries override this.
        """
        return [f for f in self.list_folders(parent_id) if f.name == name]

    @abstractmethod
    def download(self, file_id: str, dest_path: str) -> str:
        """Download a file's content to ``dest_path`` and return that path.

        Raises:
            StorageError: If the file doesn't exist or download fails
        """
        pass

    @abstractmethod
    def get_properties(self, file_id: str) -> Dict[str, str]:
        """Return the current flag mapping stored on a file.

        Raises:
            StorageError: If the file doesn't exist
        """
        pass

    # =========================================================================
    # Write Operations
    # =========================================================================

    @abstractmethod
    def create_folder(self, parent_id: str, name: str) -> FolderInfo:
        """Create a folder named ``name`` under ``parent_id``.

        Raises:
            StorageError: If creation fails
        """
        pass

    @abstractmethod
    def move(self, file_id: str, dest_folder_id: str,
             remove_parent_id: Optional[str] = None) -> FileInfo:
        """Reparent a file into ``dest_folder_id``.

        Args:
            file_id: File to move
            dest_folder_id: Destination folder
            remove_parent_id: Parent to detach from; all current parents
                when omitted

        Returns:
            The file as it looks after the move. The local driver assigns a
            new id, so callers must continue with the returned FileInfo.

        Raises:
            StorageError: If the move fails
        """
        pass

    @abstractmethod
    def set_properties(self, file_id: str, properties: Dict[str, str]) -> None:
        """Merge ``properties`` into the flags stored on a file.

        Raises:
            StorageError: If the update fails
        """
        pass

    def mark_flag(self, file_id: str, flag: str) -> bool:
        """Set ``flag`` on a file unless it is already set.

        Re-reads the stored flags right before writing, so a flag set by a
        concurrent run is not written twice. Flags are never cleared.

        Returns:
            True if this call set the flag, False if it was already set
        """
        current = self.get_properties(file_id)
        if flag_is_set(current, flag):
            return False
        self.set_properties(file_id, {flag: "1"})
        return True

"""Google Drive storage driver."""

import logging
import os
from typing import Dict, List, Optional

from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload

from .base import (
    StorageDriver,
    StorageError,
    FileInfo,
    FolderInfo,
    FOLDER_MIME_TYPE,
)
from guiaflow.errors import ConfigError
from utils.google_auth import DRIVE_SCOPES, load_credentials
from utils.retry import (
    retry_on_transient_error,
    is_transient_network_error,
    TRANSIENT_HTTP_STATUS_CODES,
)

logger = logging.getLogger(__name__)

FILE_FIELDS = "id, name, mimeType, parents, size, appProperties"


# ---------------------------------------------------------------------------
# Google Drive Retry Configuration
# ---------------------------------------------------------------------------

def _is_retryable_gdrive_error(exc: Exception) -> bool:
    """Determine if a Google Drive API error should be retried."""
    if isinstance(exc, HttpError):
        return exc.resp.status in TRANSIENT_HTTP_STATUS_CODES
    return is_transient_network_error(exc)


def _log_retry(exc: Exception, attempt: int, delay: float) -> None:
    if isinstance(exc, HttpError):
        error_desc = f"HTTP {exc.resp.status}"
    else:
        error_desc = type(exc).__name__
    logger.warning("Drive %s on attempt %d, retrying in %.1fs", error_desc, attempt, delay)


def _execute_with_retry(request):
    """Execute a Google Drive API request with automatic retry."""
    @retry_on_transient_error(
        is_retryable=_is_retryable_gdrive_error,
        on_retry=_log_retry,
    )
    def execute():
        return request.execute()
    return execute()


def _download_with_retry(request, destination) -> None:
    """Stream a Drive media request into ``destination`` chunk by chunk."""
    downloader = MediaIoBaseDownload(destination, request)

    @retry_on_transient_error(
        is_retryable=_is_retryable_gdrive_error,
        on_retry=_log_retry,
    )
    def download_next_chunk():
        return downloader.next_chunk()

    done = False
    while not done:
        _, done = download_next_chunk()


def _escape_query_value(value: str) -> str:
    """Escape a value for use in Google Drive API query strings."""
    return value.replace("\\", "\\\\").replace("'", "\\'")


def _to_file_info(item: Dict) -> FileInfo:
    return FileInfo(
        id=item["id"],
        name=item.get("name", ""),
        mime_type=item.get("mimeType"),
        parents=list(item.get("parents") or []),
        size=int(item["size"]) if item.get("size") else None,
        properties=dict(item.get("appProperties") or {}),
    )


def _to_folder_info(item: Dict) -> FolderInfo:
    parents = item.get("parents") or []
    return FolderInfo(
        id=item["id"],
        name=item.get("name", ""),
        parent_id=parents[0] if parents else None,
    )


class GDriveDriver(StorageDriver):
    """Storage driver for Google Drive (including shared drives).

    Uses service account authentication. Flags are kept in each file's
    ``appProperties``, which are private to this application and travel
    with the file when it is moved.
    """

    def __init__(self, service=None, label: str = "Google Drive") -> None:
        """Initialize Google Drive storage driver.

        Args:
            service: Prebuilt Drive v3 service; built from the configured
                service account when omitted
            label: Name used in display_name

        Raises:
            StorageError: If authentication fails
        """
        self._label = label
        if service is not None:
            self.service = service
            return
        try:
            creds = load_credentials(DRIVE_SCOPES)
            self.service = build("drive", "v3", credentials=creds, cache_discovery=False)
        except (StorageError, ConfigError):
            raise
        except Exception as e:
            raise StorageError(f"Failed to initialize Google Drive: {e}")

    @property
    def display_name(self) -> str:
        return f"{self._label} (Google Drive)"

    def _list(self, query: str, fields: str = FILE_FIELDS) -> List[Dict]:
        """Run a files.list query, following every page."""
        items: List[Dict] = []
        page_token = None

        while True:
            response = _execute_with_retry(self.service.files().list(
                q=query,
                pageSize=100,
                fields=f"nextPageToken, files({fields})",
                pageToken=page_token,
                supportsAllDrives=True,
                includeItemsFromAllDrives=True,
            ))
            items.extend(response.get("files", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break

        return items

    def get_folder(self, folder_id: str) -> FolderInfo:
        try:
            item = _execute_with_retry(self.service.files().get(
                fileId=folder_id,
                fields="id, name, mimeType, parents",
                supportsAllDrives=True,
            ))
        except Exception as e:
            raise StorageError(f"Folder not accessible: {folder_id}: {e}")

        if item.get("mimeType") != FOLDER_MIME_TYPE:
            raise StorageError(f"Not a folder: {folder_id}")
        return _to_folder_info(item)

    def list_files(self, folder_id: str) -> List[FileInfo]:
        """List files in a single folder (non-recursive)."""
        try:
            items = self._list(
                f"'{_escape_query_value(folder_id)}' in parents and trashed=false "
                f"and mimeType!='{FOLDER_MIME_TYPE}'"
            )
        except Exception as e:
            raise StorageError(f"Failed to list files in {folder_id}: {e}")

        return [_to_file_info(item) for item in items]

    def list_folders(self, folder_id: str) -> List[FolderInfo]:
        try:
            items = self._list(
                f"'{_escape_query_value(folder_id)}' in parents and trashed=false "
                f"and mimeType='{FOLDER_MIME_TYPE}'",
                fields="id, name, parents",
            )
        except Exception as e:
            raise StorageError(f"Failed to list folders in {folder_id}: {e}")
        return [_to_folder_info(item) for item in items]

    def find_folders_by_name(self, parent_id: str, name: str) -> List[FolderInfo]:
        """Server-side name query; Drive's name match may ignore case."""
        try:
            items = self._list(
                f"'{_escape_query_value(parent_id)}' in parents and trashed=false "
                f"and mimeType='{FOLDER_MIME_TYPE}' "
                f"and name='{_escape_query_value(name)}'",
                fields="id, name, parents",
            )
        except Exception as e:
            raise StorageError(f"Failed to query folder '{name}' in {parent_id}: {e}")
        return [_to_folder_info(item) for item in items]

    def download(self, file_id: str, dest_path: str) -> str:
        dest_dir = os.path.dirname(dest_path)
        if dest_dir:
            os.makedirs(dest_dir, exist_ok=True)
        try:
            request = self.service.files().get_media(fileId=file_id, supportsAllDrives=True)
            with open(dest_path, "wb") as f:
                _download_with_retry(request, f)
        except Exception as e:
            raise StorageError(f"Failed to download file {file_id}: {e}")
        return dest_path

    def get_properties(self, file_id: str) -> Dict[str, str]:
        try:
            item = _execute_with_retry(self.service.files().get(
                fileId=file_id,
                fields="id, appProperties",
                supportsAllDrives=True,
            ))
        except Exception as e:
            raise StorageError(f"Failed to read properties of {file_id}: {e}")
        return dict(item.get("appProperties") or {})

    def create_folder(self, parent_id: str, name: str) -> FolderInfo:
        file_metadata = {
            "name": name,
            "mimeType": FOLDER_MIME_TYPE,
            "parents": [parent_id],
        }
        try:
            folder = _execute_with_retry(self.service.files().create(
                body=file_metadata,
                fields="id, name, parents",
                supportsAllDrives=True,
            ))
        except Exception as e:
            raise StorageError(f"Failed to create folder '{name}' in {parent_id}: {e}")
        logger.info("Created folder '%s' (%s) in %s", name, folder["id"], parent_id)
        return _to_folder_info(folder)

    def move(self, file_id: str, dest_folder_id: str,
             remove_parent_id: Optional[str] = None) -> FileInfo:
        try:
            remove_parents = remove_parent_id
            if not remove_parents:
                meta = _execute_with_retry(self.service.files().get(
                    fileId=file_id,
                    fields="parents",
                    supportsAllDrives=True,
                ))
                remove_parents = ",".join(meta.get("parents") or [])

            item = _execute_with_retry(self.service.files().update(
                fileId=file_id,
                addParents=dest_folder_id,
                removeParents=remove_parents,
                fields=FILE_FIELDS,
                supportsAllDrives=True,
            ))
        except Exception as e:
            raise StorageError(f"Failed to move file {file_id}: {e}")
        return _to_file_info(item)

    def set_properties(self, file_id: str, properties: Dict[str, str]) -> None:
        """Merge into appProperties; Drive only touches the keys sent."""
        try:
            _execute_with_retry(self.service.files().update(
                fileId=file_id,
                body={"appProperties": properties},
                fields="id",
                supportsAllDrives=True,
            ))
        except Exception as e:
            raise StorageError(f"Failed to update properties of {file_id}: {e}")

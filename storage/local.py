"""Local filesystem storage driver."""

import json
import mimetypes
import os
import shutil
import threading
from typing import Dict, List, Optional

from .base import StorageDriver, StorageError, FileInfo, FolderInfo, flag_is_set

# Per-directory sidecar holding {filename: {flag: value}}
PROPERTIES_FILE = ".guiaflow-properties.json"


class LocalDriver(StorageDriver):
    """Storage driver for the local filesystem.

    Identifiers are POSIX paths relative to ``root_path`` ("" is the root).
    File flags live in a hidden sidecar JSON per directory and follow the
    file when it is moved. Useful for tests and for dry runs against a copy
    of the document tree.
    """

    def __init__(self, root_path: str) -> None:
        """Initialize local storage driver.

        Args:
            root_path: Path to the root directory

        Raises:
            StorageError: If root_path doesn't exist
        """
        self.root_path = os.path.abspath(root_path)
        if not os.path.exists(self.root_path):
            raise StorageError(f"Directory does not exist: {self.root_path}")
        if not os.path.isdir(self.root_path):
            raise StorageError(f"Not a directory: {self.root_path}")
        self._lock = threading.RLock()

    @property
    def display_name(self) -> str:
        return f"{self.root_path} (local)"

    def _full_path(self, item_id: str) -> str:
        """Convert an identifier to an absolute path inside the root."""
        if not item_id:
            return self.root_path
        full = os.path.abspath(os.path.join(self.root_path, item_id))
        if full != self.root_path and not full.startswith(self.root_path + os.sep):
            raise StorageError(f"Path escapes storage root: {item_id}")
        return full

    def _to_id(self, full_path: str) -> str:
        rel = os.path.relpath(full_path, self.root_path)
        return "" if rel == "." else rel.replace(os.sep, "/")

    def _require_dir(self, folder_id: str) -> str:
        full_path = self._full_path(folder_id)
        if not os.path.isdir(full_path):
            raise StorageError(f"Folder does not exist: {folder_id or '/'}")
        return full_path

    def _require_file(self, file_id: str) -> str:
        full_path = self._full_path(file_id)
        if not os.path.isfile(full_path):
            raise StorageError(f"File does not exist: {file_id}")
        return full_path

    # -------------------------------------------------------------------------
    # Sidecar properties
    # -------------------------------------------------------------------------

    def _read_sidecar(self, dir_path: str) -> Dict[str, Dict[str, str]]:
        path = os.path.join(dir_path, PROPERTIES_FILE)
        if not os.path.exists(path):
            return {}
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"Failed to read properties in {dir_path}: {e}")

    def _write_sidecar(self, dir_path: str, data: Dict[str, Dict[str, str]]) -> None:
        path = os.path.join(dir_path, PROPERTIES_FILE)
        tmp_path = path + ".tmp"
        try:
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            os.replace(tmp_path, path)
        except OSError as e:
            raise StorageError(f"Failed to write properties in {dir_path}: {e}")

    def _file_info(self, full_path: str, properties: Dict[str, str]) -> FileInfo:
        name = os.path.basename(full_path)
        mime_type, _ = mimetypes.guess_type(name)
        try:
            size = os.path.getsize(full_path)
        except OSError:
            size = None
        return FileInfo(
            id=self._to_id(full_path),
            name=name,
            mime_type=mime_type,
            parents=[self._to_id(os.path.dirname(full_path))],
            size=size,
            properties=dict(properties),
        )

    # -------------------------------------------------------------------------
    # Read operations
    # -------------------------------------------------------------------------

    def get_folder(self, folder_id: str) -> FolderInfo:
        full_path = self._require_dir(folder_id)
        parent_id = None if full_path == self.root_path else self._to_id(os.path.dirname(full_path))
        return FolderInfo(
            id=self._to_id(full_path),
            name=os.path.basename(full_path),
            parent_id=parent_id,
        )

    def list_files(self, folder_id: str) -> List[FileInfo]:
        full_path = self._require_dir(folder_id)

        with self._lock:
            sidecar = self._read_sidecar(full_path)

        results = []
        for filename in sorted(os.listdir(full_path)):
            abs_path = os.path.join(full_path, filename)
            if filename.startswith(".") or not os.path.isfile(abs_path):
                continue
            results.append(self._file_info(abs_path, sidecar.get(filename, {})))
        return results

    def list_folders(self, folder_id: str) -> List[FolderInfo]:
        full_path = self._require_dir(folder_id)
        parent_id = self._to_id(full_path)

        results = []
        for name in sorted(os.listdir(full_path)):
            abs_path = os.path.join(full_path, name)
            if os.path.isdir(abs_path):
                results.append(FolderInfo(id=self._to_id(abs_path), name=name, parent_id=parent_id))
        return results

    def download(self, file_id: str, dest_path: str) -> str:
        full_path = self._require_file(file_id)
        dest_dir = os.path.dirname(dest_path)
        if dest_dir:
            os.makedirs(dest_dir, exist_ok=True)
        try:
            shutil.copyfile(full_path, dest_path)
        except OSError as e:
            raise StorageError(f"Failed to download file {file_id}: {e}")
        return dest_path

    def get_properties(self, file_id: str) -> Dict[str, str]:
        full_path = self._require_file(file_id)
        with self._lock:
            sidecar = self._read_sidecar(os.path.dirname(full_path))
        return dict(sidecar.get(os.path.basename(full_path), {}))

    # -------------------------------------------------------------------------
    # Write operations
    # -------------------------------------------------------------------------

    def create_folder(self, parent_id: str, name: str) -> FolderInfo:
        parent_path = self._require_dir(parent_id)
        if not name or "/" in name or name in (".", ".."):
            raise StorageError(f"Invalid folder name: {name!r}")
        full_path = os.path.join(parent_path, name)
        try:
            os.mkdir(full_path)
        except OSError as e:
            raise StorageError(f"Failed to create folder '{name}' in {parent_id or '/'}: {e}")
        return FolderInfo(id=self._to_id(full_path), name=name, parent_id=self._to_id(parent_path))

    def move(self, file_id: str, dest_folder_id: str,
             remove_parent_id: Optional[str] = None) -> FileInfo:
        """Move a file and its flags; a local file has exactly one parent."""
        src_path = self._require_file(file_id)
        dest_dir = self._require_dir(dest_folder_id)
        src_dir = os.path.dirname(src_path)
        filename = os.path.basename(src_path)
        dest_path = os.path.join(dest_dir, filename)

        if os.path.exists(dest_path):
            raise StorageError(f"Destination already has a file named {filename}")

        with self._lock:
            src_sidecar = self._read_sidecar(src_dir)
            properties = src_sidecar.pop(filename, {})
            try:
                shutil.move(src_path, dest_path)
            except OSError as e:
                raise StorageError(f"Failed to move {file_id} to {dest_folder_id}: {e}")
            if properties:
                dest_sidecar = self._read_sidecar(dest_dir)
                dest_sidecar[filename] = properties
                self._write_sidecar(dest_dir, dest_sidecar)
                self._write_sidecar(src_dir, src_sidecar)

        return self._file_info(dest_path, properties)

    def set_properties(self, file_id: str, properties: Dict[str, str]) -> None:
        full_path = self._require_file(file_id)
        dir_path = os.path.dirname(full_path)
        filename = os.path.basename(full_path)
        with self._lock:
            sidecar = self._read_sidecar(dir_path)
            current = sidecar.setdefault(filename, {})
            current.update({k: str(v) for k, v in properties.items()})
            self._write_sidecar(dir_path, sidecar)

    def mark_flag(self, file_id: str, flag: str) -> bool:
        """Compare-and-set under the driver lock."""
        with self._lock:
            if flag_is_set(self.get_properties(file_id), flag):
                return False
            self.set_properties(file_id, {flag: "1"})
            return True

"""
Folder resolution for the client/period hierarchy.

Layout under the clients root:

    <clients root>/<client name>/<MM-YYYY>/guide.pdf

Two lookup policies exist on purpose. Intake and distribution use exact
name matches; ``pick_month_folder`` (manual selection) falls back to the
most recent period when the preferred one is missing.
"""

import logging
import re
from typing import List, Optional, Tuple, TYPE_CHECKING

from storage import FolderInfo

if TYPE_CHECKING:
    from storage import StorageDriver

logger = logging.getLogger(__name__)

RX_PERIOD_FOLDER = re.compile(r"^(\d{2})-(\d{4})$")


def _normalize(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def _match_case_insensitive(folders: List[FolderInfo], name: str) -> Optional[FolderInfo]:
    wanted = _normalize(name)
    for folder in folders:
        if _normalize(folder.name) == wanted:
            return folder
    return None


def find_or_create_subfolder(driver: "StorageDriver", parent_id: str, name: str) -> FolderInfo:
    """Return the child folder called ``name``, creating it if needed.

    An exact (case-sensitive) match is preferred; a case-insensitive match is
    accepted next so that "Acme" is never created beside "ACME". Calling this
    twice with the same arguments yields the same folder. Two processes
    racing between lookup and create can still both create it.
    """
    name = (name or "").strip()
    if not name:
        raise ValueError("Folder name must not be empty")

    candidates = driver.find_folders_by_name(parent_id, name)
    for folder in candidates:
        if folder.name == name:
            return folder
    if candidates:
        return candidates[0]

    existing = _match_case_insensitive(driver.list_folders(parent_id), name)
    if existing:
        logger.debug("Using existing folder '%s' for '%s'", existing.name, name)
        return existing

    return driver.create_folder(parent_id, name)


def find_exact_subfolder_by_name(driver: "StorageDriver", parent_id: str,
                                 name: str) -> Optional[FolderInfo]:
    """Case-insensitive exact match among the child folders. Read-only."""
    return _match_case_insensitive(driver.list_folders(parent_id), name)


def find_client_folder(driver: "StorageDriver", clients_root_id: str,
                       client_name: str) -> Optional[FolderInfo]:
    """Locate a client's folder by name without creating it.

    Tries the backend's exact name query first, then a trimmed
    case-insensitive comparison over all client folders.
    """
    name = (client_name or "").strip()
    if not name:
        return None
    hits = driver.find_folders_by_name(clients_root_id, name)
    if hits:
        return hits[0]
    return find_exact_subfolder_by_name(driver, clients_root_id, name)


def parse_period(name: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse "MM-YYYY" into a sortable (year, month) key."""
    match = RX_PERIOD_FOLDER.match((name or "").strip())
    if not match:
        return None
    month, year = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        return None
    return (year, month)


def pick_month_folder(driver: "StorageDriver", parent_id: str,
                      preferred_name: Optional[str] = None) -> Optional[FolderInfo]:
    """Choose a period folder under a client folder.

    Returns the folder named ``preferred_name`` when it exists among the
    "MM-YYYY" folders; otherwise the most recent period. Folders whose names
    are not periods are ignored.
    """
    periods = []
    for folder in driver.list_folders(parent_id):
        key = parse_period(folder.name)
        if key is not None:
            periods.append((key, folder))

    if preferred_name:
        wanted = preferred_name.strip()
        for _, folder in periods:
            if folder.name.strip() == wanted:
                return folder
        logger.warning("Requested period folder '%s' not found; using the most recent", wanted)

    if not periods:
        return None
    periods.sort(key=lambda item: item[0], reverse=True)
    return periods[0][1]

"""Intake workflow: file new guides from the staging folder by client and period."""

import logging
import os
import shutil
import tempfile
from dataclasses import dataclass
from typing import Callable, Optional

from storage import FileInfo, StorageDriver, SORTED_FLAG
from . import pdf_text
from .extractor import extract
from .folders import find_or_create_subfolder
from .run_log import (
    RunLog, LogEntry,
    STATUS_FILED, STATUS_SKIP, STATUS_ERROR,
    REASON_OK, REASON_UNCLASSIFIED, REASON_INTAKE_FAILED,
)

logger = logging.getLogger(__name__)

ENTRY_TYPE = "intake"


@dataclass
class IntakeResult:
    """Counts for one intake run."""
    total: int = 0      # PDFs in the staging folder
    pending: int = 0    # of those, not yet flagged sorted
    sorted: int = 0
    skipped: int = 0    # left in staging, fields missing
    failed: int = 0


def _record(run_log: Optional[RunLog], status: str, reason: str, document: str,
            client: Optional[str] = None, period: Optional[str] = None) -> None:
    if run_log is None:
        return
    run_log.append_entry(LogEntry(
        type=ENTRY_TYPE,
        status=status,
        reason=reason,
        document=document,
        client=client,
        period=period,
    ))


def _cleanup_scratch(scratch_dir: str) -> None:
    try:
        shutil.rmtree(scratch_dir)
    except OSError as e:
        logger.warning("Failed to remove scratch directory %s: %s", scratch_dir, e)


def process_document(driver: StorageDriver, file_info: FileInfo, staging_id: str,
                     clients_root_id: str, run_log: Optional[RunLog] = None,
                     read_text: Callable[[str], str] = pdf_text.extract_text) -> str:
    """File one staging document.

    Returns:
        "sorted" if the document was moved and flagged, "skipped" if its
        client or period could not be read (the document stays in staging)

    Raises:
        Exception: Storage errors propagate to the caller, which records them
    """
    scratch_dir = tempfile.mkdtemp(prefix="guiaflow-intake-")
    try:
        local_path = driver.download(file_info.id, os.path.join(scratch_dir, "document.pdf"))
        fields = extract(read_text(local_path))
    finally:
        _cleanup_scratch(scratch_dir)

    logger.debug("Fields for %s: %s", file_info.name, fields.to_dict())

    if not fields.is_routable:
        logger.warning("Unclassified document %s (%s): entity=%r period=%r",
                       file_info.name, file_info.id, fields.entity, fields.period)
        _record(run_log, STATUS_SKIP, REASON_UNCLASSIFIED, file_info.name,
                client=fields.entity, period=fields.period)
        return "skipped"

    client_folder = find_or_create_subfolder(driver, clients_root_id, fields.entity)
    period_folder = find_or_create_subfolder(driver, client_folder.id, fields.period)

    moved = driver.move(file_info.id, period_folder.id, remove_parent_id=staging_id)
    if not driver.mark_flag(moved.id, SORTED_FLAG):
        logger.info("Document %s was already flagged sorted", moved.name)

    logger.info("Filed %s -> %s/%s", file_info.name, client_folder.name, period_folder.name)
    _record(run_log, STATUS_FILED, REASON_OK, file_info.name,
            client=client_folder.name, period=period_folder.name)
    return "sorted"


def run_intake(driver: StorageDriver, staging_id: str, clients_root_id: str,
               run_log: Optional[RunLog] = None,
               read_text: Callable[[str], str] = pdf_text.extract_text) -> IntakeResult:
    """File every unsorted PDF in the staging folder.

    Each document is independent: a failure is logged, recorded in the run
    log and leaves the document in staging for the next run.
    """
    result = IntakeResult()

    pdf_files = [f for f in driver.list_files(staging_id) if f.is_pdf]
    result.total = len(pdf_files)
    pending = [f for f in pdf_files if not f.has_flag(SORTED_FLAG)]
    result.pending = len(pending)

    if not pending:
        logger.info("No unsorted PDF files in staging")
        return result

    logger.info("Found %d unsorted PDF files in staging (%d total)", len(pending), len(pdf_files))

    for i, file_info in enumerate(pending, 1):
        logger.info("[%d/%d] %s", i, len(pending), file_info.name)
        try:
            outcome = process_document(driver, file_info, staging_id, clients_root_id,
                                       run_log=run_log, read_text=read_text)
        except Exception as e:
            logger.error("Error filing %s (%s): %s", file_info.name, file_info.id, e)
            _record(run_log, STATUS_ERROR, REASON_INTAKE_FAILED, file_info.name)
            result.failed += 1
            continue

        if outcome == "sorted":
            result.sorted += 1
        else:
            result.skipped += 1

    logger.info("Intake finished: %d sorted, %d skipped, %d failed",
                result.sorted, result.skipped, result.failed)
    return result

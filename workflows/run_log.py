"""Run log for intake and send runs.

Keeps a snapshot of the last run (``last-run.json``) and an append-only
audit trail (``sent-emails.jsonl``) with one JSON line per event. Both are
observability only: whether a document was already filed or sent is decided
by the flags stored on the document, never by this log.
"""

import dataclasses
import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Union

from guiaflow import GuiaFlow

logger = logging.getLogger(__name__)

LAST_RUN_FILE = "last-run.json"
AUDIT_FILE = "sent-emails.jsonl"

# Entry statuses
STATUS_SENT = "sent"
STATUS_SKIP = "skip"
STATUS_ERROR = "error"
STATUS_FILED = "filed"

# Entry reasons
REASON_OK = "ok"
REASON_CLIENT_FOLDER_NOT_FOUND = "client_folder_not_found"
REASON_MONTH_FOLDER_NOT_FOUND = "month_folder_not_found"
REASON_NO_PDFS = "no_pdfs"
REASON_ALREADY_PROCESSED = "already_processed"
REASON_DOWNLOAD_FAILED = "download_failed"
REASON_SEND_FAILED = "send_failed"
REASON_DRY_RUN = "dry_run"
REASON_UNCLASSIFIED = "unclassified"
REASON_INTAKE_FAILED = "intake_failed"


def flatten_error(error: Union[BaseException, str, None]) -> Optional[str]:
    """Reduce an error to a one-line message, never a traceback."""
    if error is None:
        return None
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
    else:
        message = str(error)
    return " ".join(message.split())


@dataclass
class LogEntry:
    """One outcome of a run: a client batch (send) or a document (intake)."""

    status: str
    reason: str
    type: str = "email"
    client: Optional[str] = None
    period: Optional[str] = None
    recipient: Optional[str] = None
    subject: Optional[str] = None
    document: Optional[str] = None
    timestamp: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "LogEntry":
        names = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass
class RunState:
    """Snapshot of the current or last run."""

    kind: Optional[str] = None          # "intake" | "send"
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    running: bool = False
    error: Optional[str] = None
    entries: List[LogEntry] = field(default_factory=list)
    stale: bool = False

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "RunState":
        error = data.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        return cls(
            kind=data.get("kind"),
            started_at=data.get("started_at"),
            finished_at=data.get("finished_at"),
            running=bool(data.get("running")),
            error=error,
            entries=[LogEntry.from_dict(e) for e in data.get("entries") or []],
        )


class RunLog:
    """File-backed run log.

    Args:
        data_dir: Directory holding the snapshot and the audit file
        stale_after: A snapshot still marked running after this long is
            reported as not running (the process died mid-run)
        clock: Returns the current UTC time, replaceable in tests
    """

    def __init__(self, data_dir: str = "data",
                 stale_after: Optional[timedelta] = timedelta(hours=6),
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        self.data_dir = data_dir
        self.last_run_path = os.path.join(data_dir, LAST_RUN_FILE)
        self.audit_path = os.path.join(data_dir, AUDIT_FILE)
        self.stale_after = stale_after
        self._clock = clock
        self._lock = threading.Lock()
        self._state: Optional[RunState] = None

    @classmethod
    def from_config(cls) -> "RunLog":
        """Run log under DATA_DIR with the RUN_STALE_HOURS threshold (0 disables it)."""
        hours = GuiaFlow.run_stale_hours
        return cls(GuiaFlow.data_dir, stale_after=timedelta(hours=hours) if hours > 0 else None)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def _write_snapshot(self, state: RunState) -> None:
        """Write via temp file + rename so readers never see a partial file."""
        os.makedirs(self.data_dir, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(prefix=".last-run-", suffix=".tmp", dir=self.data_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(state.to_dict(), f, indent=2, ensure_ascii=False)
            os.replace(temp_path, self.last_run_path)
        except BaseException:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def _read_snapshot(self) -> RunState:
        try:
            with open(self.last_run_path, "r", encoding="utf-8") as f:
                return RunState.from_dict(json.load(f))
        except FileNotFoundError:
            return RunState()
        except (OSError, ValueError) as e:
            logger.warning("Unreadable run snapshot %s: %s", self.last_run_path, e)
            return RunState()

    def _append_audit(self, entry: LogEntry) -> None:
        try:
            os.makedirs(self.data_dir, exist_ok=True)
            with open(self.audit_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(dataclasses.asdict(entry), ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning("Failed to append to audit log %s: %s", self.audit_path, e)

    # -------------------------------------------------------------------------
    # Run lifecycle
    # -------------------------------------------------------------------------

    def start_run(self, kind: str) -> RunState:
        """Replace the last-run snapshot with a fresh running record."""
        with self._lock:
            self._state = RunState(kind=kind, started_at=self._clock().isoformat(), running=True)
            self._write_snapshot(self._state)
            return self._state

    def append_entry(self, entry: LogEntry) -> LogEntry:
        """Timestamp an entry and record it in the snapshot and audit trail.

        Never raises: a failed write is logged and the run carries on.
        """
        if entry.timestamp is None:
            entry.timestamp = self._clock().isoformat()
        with self._lock:
            if self._state is None:
                self._state = self._read_snapshot()
            self._state.entries.append(entry)
            try:
                self._write_snapshot(self._state)
            except OSError as e:
                logger.warning("Failed to persist run snapshot: %s", e)
            self._append_audit(entry)
        return entry

    def append_send(self, client: str, recipient: str, period: str, subject: str) -> LogEntry:
        return self.append_entry(LogEntry(
            status=STATUS_SENT,
            reason=REASON_OK,
            client=client,
            recipient=recipient,
            period=period,
            subject=subject,
        ))

    def finish_run(self, error: Union[BaseException, str, None] = None) -> RunState:
        """Mark the run finished, keeping only a flattened error message."""
        with self._lock:
            state = self._state or self._read_snapshot()
            state.running = False
            state.finished_at = self._clock().isoformat()
            state.error = flatten_error(error)
            self._write_snapshot(state)
            self._state = None
            return state

    def get_last_run(self) -> RunState:
        """Return the persisted snapshot, or an empty RunState if none exists."""
        with self._lock:
            state = self._read_snapshot()
        if state.running and self._is_stale(state):
            state.running = False
            state.stale = True
        return state

    def _is_stale(self, state: RunState) -> bool:
        if self.stale_after is None or not state.started_at:
            return False
        try:
            started = datetime.fromisoformat(state.started_at)
        except ValueError:
            return True
        if started.tzinfo is None:
            started = started.replace(tzinfo=timezone.utc)
        return self._clock() - started > self.stale_after

    def read_history(self, limit: Optional[int] = None) -> List[LogEntry]:
        """Entries from the audit trail across runs, oldest first."""
        entries: List[LogEntry] = []
        try:
            with open(self.audit_path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line:
                        continue
                    try:
                        entries.append(LogEntry.from_dict(json.loads(line)))
                    except ValueError:
                        logger.debug("Skipping malformed audit line")
        except FileNotFoundError:
            return []
        if limit is not None:
            entries = entries[-limit:] if limit > 0 else []
        return entries

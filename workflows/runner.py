"""Run lifecycle: single-flight guard, start/finish bracketing and job wiring."""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional, TypeVar, TYPE_CHECKING

from guiaflow import GuiaFlow
from guiaflow.errors import RunInProgressError
from mail import create_mailer
from registry import create_registry
from .distribution import run_distribution
from .intake import run_intake
from .run_log import RunLog

if TYPE_CHECKING:
    from mail import Mailer
    from registry import ClientRegistry
    from storage import StorageDriver
    from .distribution import DistributionResult
    from .intake import IntakeResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RunGuard:
    """Single-slot mutex: at most one intake or send run at a time.

    Acquisition never blocks. A second trigger while a run is active raises
    RunInProgressError with the kind of the run that holds the slot.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active_kind: Optional[str] = None
        self.started_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def acquire(self, kind: str) -> None:
        if not self._lock.acquire(blocking=False):
            raise RunInProgressError(self.active_kind or "unknown")
        self.active_kind = kind
        self.started_at = datetime.now(timezone.utc)

    def release(self) -> None:
        self.active_kind = None
        self.started_at = None
        self._lock.release()

    def hold(self, kind: str) -> "_GuardContext":
        """Context manager form of acquire/release."""
        return _GuardContext(self, kind)


class _GuardContext:
    def __init__(self, guard: RunGuard, kind: str) -> None:
        self.guard = guard
        self.kind = kind

    def __enter__(self) -> RunGuard:
        self.guard.acquire(self.kind)
        return self.guard

    def __exit__(self, exc_type, exc, tb) -> None:
        self.guard.release()


def run_pipeline(kind: str, run_log: RunLog, fn: Callable[[], T]) -> T:
    """Run ``fn`` between start_run and finish_run.

    The caller must already hold the guard. Unexpected exceptions are
    recorded as a flattened message and re-raised.
    """
    try:
        run_log.start_run(kind)
    except Exception as e:
        logger.error("Cannot record the start of the %s run, not running it: %s", kind, e)
        raise
    try:
        result = fn()
    except Exception as e:
        logger.error("%s run failed: %s", kind, e)
        run_log.finish_run(error=e)
        raise
    run_log.finish_run()
    return result


def guarded_run(kind: str, guard: RunGuard, run_log: RunLog, fn: Callable[[], T]) -> T:
    """Acquire the guard (or raise RunInProgressError) and run the pipeline."""
    with guard.hold(kind):
        return run_pipeline(kind, run_log, fn)


def intake_job(driver: "StorageDriver", run_log: RunLog) -> Callable[[], "IntakeResult"]:
    """Bind the configured staging and clients roots into an intake run.

    Raises:
        ConfigError: If either root is not configured
    """
    GuiaFlow.require(DRIVE_FOLDER_ID_INBOX="inbox_folder_id",
                     DRIVE_FOLDER_ID_CLIENTES="clients_folder_id")

    def job() -> "IntakeResult":
        return run_intake(driver, GuiaFlow.inbox_folder_id, GuiaFlow.clients_folder_id,
                          run_log=run_log)
    return job


def send_job(driver: "StorageDriver", run_log: RunLog,
             registry: Optional["ClientRegistry"] = None,
             mailer: Optional["Mailer"] = None) -> Callable[[], "DistributionResult"]:
    """Bind the configured registry, mailer and options into a distribution run.

    The registry and mailer are created from configuration when not given.

    Raises:
        ConfigError: If the clients root or the client list is not configured
    """
    GuiaFlow.require(DRIVE_FOLDER_ID_CLIENTES="clients_folder_id")
    if registry is None and not GuiaFlow.clients_csv:
        GuiaFlow.require(SHEET_ID="sheet_id")

    def job() -> "DistributionResult":
        return run_distribution(
            driver,
            registry or create_registry(),
            mailer or create_mailer(),
            GuiaFlow.clients_folder_id,
            run_log=run_log,
            force_send=GuiaFlow.force_send,
            dry_run=GuiaFlow.dry_run,
            target_month=GuiaFlow.target_month or None,
            timezone=GuiaFlow.timezone,
            signature=GuiaFlow.mail_signature,
        )
    return job

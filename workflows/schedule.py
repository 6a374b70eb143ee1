"""In-process cron trigger for send runs."""

import logging
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger

from guiaflow.errors import RunInProgressError
from .run_log import RunLog
from .runner import RunGuard, run_pipeline

logger = logging.getLogger(__name__)


def scheduled_send(guard: RunGuard, run_log: RunLog,
                   job_factory: Callable[[], Callable[[], object]]) -> str:
    """One scheduled fire. Returns "skipped", "failed" or "finished".

    A fire while another run holds the guard is skipped, not queued.
    """
    try:
        guard.acquire("send")
    except RunInProgressError as e:
        logger.warning("Scheduled send skipped: a %s run is in progress", e.active_kind)
        return "skipped"

    try:
        run_pipeline("send", run_log, job_factory())
    except Exception as e:
        logger.error("Scheduled send failed: %s", e)
        return "failed"
    finally:
        guard.release()
    return "finished"


def create_scheduler(cron: str, guard: RunGuard, run_log: RunLog,
                     job_factory: Callable[[], Callable[[], object]],
                     timezone: str) -> BackgroundScheduler:
    """Build a (not yet started) scheduler firing send runs on ``cron``.

    Args:
        cron: Five-field crontab expression, e.g. "0 8 1 * *"
        timezone: IANA zone the expression is evaluated in

    Raises:
        ValueError: If the expression is invalid
        LookupError: If the zone is unknown
    """
    trigger = CronTrigger.from_crontab(cron, timezone=timezone)
    scheduler = BackgroundScheduler(timezone=timezone)
    scheduler.add_job(scheduled_send, trigger, args=[guard, run_log, job_factory],
                      id="send", max_instances=1, coalesce=True)
    return scheduler

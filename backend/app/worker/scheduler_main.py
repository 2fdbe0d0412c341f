"""Dedicated APScheduler worker process."""
from __future__ import annotations

import logging
import signal
import threading

from apscheduler.schedulers.background import BackgroundScheduler

from app.core.config import settings
from app.core.errors import FatalSyncError
from app.core.logging import configure_logging
from app.db.session import SessionLocal
from app.observability.client import init_opik
from app.services.job_runner import run_program_sync


logger = logging.getLogger(__name__)

PROGRAM_SYNC_JOB_ID = "program_sync_job"


def main() -> None:
    configure_logging(log_level=settings.log_level)
    init_opik()
    logger.info("Scheduler worker starting (enabled=%s)", settings.scheduler_enabled)

    scheduler = BackgroundScheduler(timezone=settings.scheduler_timezone)

    if settings.scheduler_enabled:
        register_jobs(scheduler)
        scheduler.start()
        if settings.jobs_run_on_startup:
            logger.info("Running program sync once on startup")
            run_program_sync_job()
    else:
        logger.warning("Scheduler disabled via config; worker will idle")

    stop_event = threading.Event()

    def shutdown(signum, frame):  # pragma: no cover - signal handler
        logger.info("Scheduler worker shutting down (signal=%s)", signum)
        if scheduler.running:
            scheduler.shutdown(wait=False)
        stop_event.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)

    try:
        stop_event.wait()
    except KeyboardInterrupt:  # pragma: no cover - manual stop
        shutdown(signal.SIGINT, None)


def register_jobs(scheduler: BackgroundScheduler) -> None:
    scheduler.add_job(
        run_program_sync_job,
        trigger="interval",
        hours=settings.program_sync_interval_hours,
        id=PROGRAM_SYNC_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(
        "Registered program sync job (every %sh, %s)",
        settings.program_sync_interval_hours,
        settings.scheduler_timezone,
    )


def run_program_sync_job() -> None:
    try:
        run_program_sync(SessionLocal, trigger="scheduler")
    except FatalSyncError:
        logger.exception("Program sync job aborted")


if __name__ == "__main__":  # pragma: no cover - manual launch
    main()

"""Scheduler process for the recurring pending-record sync.

Run separately from CLI/manual flows using:
    python -m clinic_sync.jobs.scheduler
"""

from __future__ import annotations

import argparse
import logging
from datetime import datetime
from zoneinfo import ZoneInfo

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.job import Job
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

from clinic_sync.config import RuntimeConfig, resolve_config
from clinic_sync.jobs.tasks import sync_pending_records

JOB_ID = "pending_record_sync"

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    """Configure process-wide logging for scheduler mode."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _log_job_state(scheduler: BaseScheduler, event: JobExecutionEvent) -> None:
    """Log last and next run metadata for observability."""
    job = scheduler.get_job(event.job_id)
    job_next_run = getattr(job, "next_run_time", None) if job else None
    next_run = job_next_run.isoformat() if job_next_run else "none"
    last_run_at = (
        event.scheduled_run_time.isoformat()
        if event.scheduled_run_time
        else datetime.now().astimezone().isoformat()
    )

    if event.exception:
        logger.error(
            "Job %s failed at %s; retrying at next run %s",
            event.job_id,
            last_run_at,
            next_run,
            exc_info=event.exception,
        )
        return

    logger.info("Job %s completed at %s; next run at %s", event.job_id, last_run_at, next_run)


def register_sync_job(scheduler: BaseScheduler, config: RuntimeConfig) -> Job:
    """Register the recurring sync job, keeping any job already registered under the same id.

    ``max_instances=1`` drops a trigger that fires while a run is still in progress,
    and ``coalesce`` collapses missed runs into one.
    """
    existing = scheduler.get_job(JOB_ID)
    if existing is not None:
        logger.info("Job %s already registered; keeping existing schedule", JOB_ID)
        return existing

    trigger = IntervalTrigger(minutes=config.interval_minutes, timezone=ZoneInfo(config.timezone))
    job = scheduler.add_job(
        sync_pending_records,
        trigger=trigger,
        kwargs={"config": config},
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=config.interval_minutes * 60,
    )

    next_run = trigger.get_next_fire_time(None, datetime.now(tz=ZoneInfo(config.timezone)))
    logger.info(
        "Registered %s every %s minutes (next run: %s)",
        JOB_ID,
        config.interval_minutes,
        next_run.isoformat() if next_run else "none",
    )
    return job


def build_scheduler(config: RuntimeConfig | None = None) -> BlockingScheduler:
    """Build and configure the scheduler instance."""
    config = config or resolve_config()
    scheduler = BlockingScheduler(timezone=ZoneInfo(config.timezone))
    register_sync_job(scheduler, config)
    scheduler.add_listener(
        lambda event: _log_job_state(scheduler, event),
        EVENT_JOB_EXECUTED | EVENT_JOB_ERROR,
    )
    return scheduler


def main() -> None:
    """Entrypoint for a dedicated scheduler process."""
    parser = argparse.ArgumentParser(description="Run the recurring pending-record sync scheduler")
    parser.add_argument(
        "--once",
        action="store_true",
        help="Execute one sync run immediately and exit (manual mode)",
    )
    args = parser.parse_args()

    configure_logging()
    config = resolve_config()

    if args.once:
        logger.info("Running in manual mode: executing %s once", JOB_ID)
        sync_pending_records(config=config)
        logger.info("Manual execution of %s completed", JOB_ID)
        return

    scheduler = build_scheduler(config)
    logger.info("Starting scheduler process")
    scheduler.start()


if __name__ == "__main__":
    main()

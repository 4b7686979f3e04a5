"""APScheduler-based interval scheduling for registration count audits."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from scripts.enrollment_audit.config import AuditConfig

logger = logging.getLogger("enrollment_audit.scheduler")


def _run_count_audit(config: AuditConfig) -> None:
    """Run a single count audit with retry logic."""
    from scripts.enrollment_audit.cli import run_operation

    max_retries = config.scheduler.max_retries
    backoff_base = 30  # seconds

    for attempt in range(max_retries + 1):
        try:
            outcome = asyncio.run(run_operation("count", config))
        except Exception as exc:
            if attempt < max_retries:
                delay = backoff_base * (2 ** attempt)
                logger.warning(
                    "Count audit failed (attempt %d/%d), retrying in %ds: %s",
                    attempt + 1, max_retries, delay, exc,
                )
                time.sleep(delay)
                continue
            logger.error("Count audit failed after %d retries: %s", max_retries, exc)
            return

        if outcome.succeeded:
            logger.info("Count audit complete: %s", outcome.summary,
                        extra={"operation": "count", "records": outcome.results.total})
        else:
            logger.warning("Count audit completed with uncounted groups: %s", outcome.summary,
                           extra={"operation": "count"})
        return


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


def build_scheduler(config: AuditConfig) -> BlockingScheduler:
    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    sched = config.scheduler

    scheduler.add_job(
        _run_count_audit,
        "interval",
        minutes=sched.count_interval_min,
        args=[config],
        id="count_audit",
        max_instances=1,
        misfire_grace_time=sched.misfire_grace_time,
        next_run_time=datetime.now(),
    )
    return scheduler


def start_scheduler(config: AuditConfig) -> None:
    """Start the blocking scheduler with the count audit job."""
    scheduler = build_scheduler(config)
    logger.info("Starting scheduler with jobs: %s",
                [j.id for j in scheduler.get_jobs()])
    scheduler.start()

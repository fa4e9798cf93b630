"""
APScheduler integration for FastAPI.

Runs the email report job in-process, at the top of every hour. The job is
idempotent per period, so missed or repeated fires only cost an hour of
precision.
"""

from datetime import datetime
from typing import Any

from apscheduler import AsyncScheduler, ConflictPolicy, JobOutcome, JobReleased
from apscheduler.datastores.memory import MemoryDataStore
from apscheduler.triggers.cron import CronTrigger

from statmail.config import get_settings
from statmail.core.database import AsyncSessionLocal
from statmail.core.datetime_utils import to_naive_utc, utc_now
from statmail.core.logging import get_logger

logger = get_logger(__name__)

SEND_REPORTS_JOB_ID = "send_email_reports"

# Global scheduler instance
scheduler: AsyncScheduler | None = None


async def send_reports_job() -> None:
    """Hourly report job - sends reports to sites entering their window."""
    from statmail.jobs.send_reports import run_send_reports

    logger.debug("scheduled_send_reports_started")
    async with AsyncSessionLocal() as db:
        try:
            summary = await run_send_reports(db)
        except Exception as e:
            logger.bind(error=str(e)).error("scheduled_send_reports_failed")
            raise  # Re-raise so APScheduler records the failure

    if summary is None:
        # Configuration errors are logged by the job; surface them as a failed run
        raise RuntimeError("Report dispatch aborted by a configuration error")

    if summary.sent_count > 0 or summary.error_count > 0:
        logger.bind(sent=summary.sent_count, errors=summary.error_count).info(
            "scheduled_send_reports_completed"
        )
    else:
        logger.debug("scheduled_send_reports_nothing_due")


async def _record_job_result(
    job_id: str,
    scheduled_at: datetime,
    started_at: datetime,
    outcome: JobOutcome,
    error: str | None = None,
) -> None:
    """Record job execution result to database."""
    from statmail.models.job_run import JobRun

    async with AsyncSessionLocal() as db:
        job_run = JobRun(
            job_id=job_id,
            scheduled_at=to_naive_utc(scheduled_at),
            started_at=to_naive_utc(started_at),
            finished_at=utc_now(),
            outcome=outcome.name,
            error=error,
        )
        db.add(job_run)
        await db.commit()


async def _on_job_completed(event: Any) -> None:
    """Handle job completion events."""
    if isinstance(event, JobReleased):
        try:
            scheduled_at = getattr(event, "scheduled_fire_time", None) or utc_now()
            started_at = getattr(event, "started_at", None) or utc_now()
            exception = getattr(event, "exception", None)
            await _record_job_result(
                job_id=event.schedule_id or "unknown",
                scheduled_at=scheduled_at,
                started_at=started_at,
                outcome=event.outcome,
                error=str(exception) if event.outcome == JobOutcome.error and exception else None,
            )
        except Exception as e:
            logger.bind(error=str(e)).error("failed_to_record_job_result")


async def start_scheduler() -> AsyncScheduler | None:
    """Initialize and start the scheduler."""
    global scheduler

    settings = get_settings()
    if not settings.scheduler_enabled:
        logger.info("scheduler_disabled_by_config")
        return None

    # Schedules are code-defined, so in-memory storage loses nothing on restart
    scheduler = AsyncScheduler(data_store=MemoryDataStore())

    # Start the scheduler first (required before calling other methods in APScheduler 4.x)
    await scheduler.__aenter__()

    scheduler.subscribe(_on_job_completed)

    await scheduler.add_schedule(
        send_reports_job,
        CronTrigger(minute=0),
        id=SEND_REPORTS_JOB_ID,
        conflict_policy=ConflictPolicy.replace,
    )

    await scheduler.start_in_background()

    logger.bind(jobs=[SEND_REPORTS_JOB_ID]).info("scheduler_started")

    return scheduler


async def stop_scheduler() -> None:
    """Gracefully stop the scheduler."""
    global scheduler
    if scheduler:
        await scheduler.__aexit__(None, None, None)
        logger.info("scheduler_stopped")
        scheduler = None


async def get_job_schedules() -> list[dict[str, Any]]:
    """Get all registered job schedules."""
    if not scheduler:
        return []

    schedules = await scheduler.get_schedules()
    return [
        {
            "id": s.id,
            "task_id": s.task_id,
            "trigger": str(s.trigger),
            "next_fire_time": s.next_fire_time.isoformat() if s.next_fire_time else None,
            "last_fire_time": s.last_fire_time.isoformat() if s.last_fire_time else None,
        }
        for s in schedules
    ]

"""Scheduler visibility: registered schedules and past report job runs."""

from datetime import datetime

from fastapi import APIRouter, Query
from pydantic import BaseModel, ConfigDict
from sqlalchemy import select

from statmail.core.scheduler import get_job_schedules
from statmail.dependencies import DBSession
from statmail.models.job_run import JobRun

router = APIRouter()


class ScheduleResponse(BaseModel):
    """A registered schedule and its fire times."""

    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None


class JobRunResponse(BaseModel):
    """One recorded job execution."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    job_id: str
    scheduled_at: datetime
    started_at: datetime
    finished_at: datetime
    duration_seconds: float
    outcome: str
    error: str | None


@router.get("/jobs/schedules", response_model=list[ScheduleResponse])
async def list_schedules() -> list[ScheduleResponse]:
    """Schedules known to the in-process scheduler; empty when it is disabled."""
    return [ScheduleResponse(**s) for s in await get_job_schedules()]


@router.get("/jobs/runs", response_model=list[JobRunResponse])
async def list_job_runs(
    db: DBSession,
    job_id: str | None = Query(default=None, description="Only runs of this job"),
    outcome: str | None = Query(default=None, description="Only runs with this outcome"),
    limit: int = Query(default=50, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[JobRunResponse]:
    """
    Recent job runs, newest first.

    Example: GET /api/jobs/runs?job_id=send_email_reports&outcome=error
    """
    query = select(JobRun).order_by(JobRun.scheduled_at.desc())
    if job_id:
        query = query.where(JobRun.job_id == job_id)
    if outcome:
        query = query.where(JobRun.outcome == outcome)

    result = await db.execute(query.offset(offset).limit(limit))
    return [JobRunResponse.model_validate(run) for run in result.scalars().all()]

"""HTTP trigger for the email report job.

Lets an external cron (or an operator) run the dispatch with an explicit
reference instant instead of relying on the in-process scheduler.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel

from statmail.dependencies import DBSession, JobAuth
from statmail.jobs.send_reports import run_send_reports
from statmail.services.notifier import LoggingNotifier, Notifier, ResendNotifier
from statmail.services.report_assembler import ReportAssembler, StatsApiAssembler

router = APIRouter()


class ReportRunResponse(BaseModel):
    """Response model for a report dispatch run."""

    reference_instant: str
    dry_run: bool
    sent: int
    errors: int
    cadences: dict[str, dict[str, Any]]


def get_report_assembler() -> ReportAssembler:
    return StatsApiAssembler()


def get_notifier(dry_run: bool = Query(default=False)) -> Notifier:
    return LoggingNotifier() if dry_run else ResendNotifier()


@router.post("/reports/run", response_model=ReportRunResponse)
async def run_reports(
    db: DBSession,
    _auth: JobAuth,
    assembler: Annotated[ReportAssembler, Depends(get_report_assembler)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
    current_time: str | None = Query(
        default=None,
        description="Reference instant (ISO-8601). Defaults to now.",
    ),
    dry_run: bool = Query(default=False, description="Log instead of sending; no ledger writes"),
) -> ReportRunResponse:
    """
    Send the weekly and monthly reports due at `current_time`.

    Examples:
    - POST /api/reports/run
    - POST /api/reports/run?current_time=2026-10-19T13:15:00Z&dry_run=true
    """
    summary = await run_send_reports(
        db,
        current_time,
        dry_run=dry_run,
        assembler=assembler,
        notifier=notifier,
    )

    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Report dispatch aborted: invalid reference instant or site timezone",
        )

    data = summary.as_dict()
    return ReportRunResponse(
        reference_instant=data.pop("reference_instant"),
        dry_run=dry_run,
        sent=summary.sent_count,
        errors=summary.error_count,
        cadences=data,
    )

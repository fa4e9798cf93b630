"""
Hourly email report job.

Run with: python -m statmail.jobs.send_reports
Options:
  --current-time ISO  Reference instant (default: now)
  --dry-run           Log reports instead of emailing them; no ledger writes

Reports go out on Monday (weekly) and the 1st (monthly) from 09:00 in each
site's timezone. Running every hour gives hourly precision; running more
often is harmless.

Examples:
  python -m statmail.jobs.send_reports
  python -m statmail.jobs.send_reports --current-time 2026-10-19T13:15:00Z --dry-run
"""

import argparse
import asyncio
import sys

from sqlalchemy.ext.asyncio import AsyncSession

from statmail.core.datetime_utils import aware_utc_now, parse_reference_instant
from statmail.core.errors import ConfigurationError
from statmail.core.logging import get_logger, setup_logging
from statmail.services.notifier import LoggingNotifier, Notifier, ResendNotifier
from statmail.services.report_assembler import ReportAssembler, StatsApiAssembler
from statmail.services.report_dispatch import DispatchSummary, run_report_dispatch

logger = get_logger(__name__)


async def run_send_reports(
    db: AsyncSession,
    current_time: str | None = None,
    dry_run: bool = False,
    assembler: ReportAssembler | None = None,
    notifier: Notifier | None = None,
) -> DispatchSummary | None:
    """Resolve the reference instant and run one dispatch.

    "Now" is resolved here, never inside the dispatch core.

    Returns:
        The run summary, or None if a configuration error aborted the run
    """
    try:
        reference_instant = (
            parse_reference_instant(current_time) if current_time else aware_utc_now()
        )
        return await run_report_dispatch(
            db,
            reference_instant,
            assembler or StatsApiAssembler(),
            notifier or (LoggingNotifier() if dry_run else ResendNotifier()),
            record_ledger=not dry_run,
        )
    except ConfigurationError as e:
        logger.bind(current_time=current_time, error=str(e)).error("report_dispatch_config_error")
        return None


async def main(current_time: str | None = None, dry_run: bool = False) -> bool:
    """Run the report job. Returns False if the run was aborted."""
    from statmail.core.database import AsyncSessionLocal

    setup_logging()
    logger.bind(current_time=current_time or "now", dry_run=dry_run).info(
        "send_reports_job_started"
    )

    async with AsyncSessionLocal() as db:
        try:
            summary = await run_send_reports(db, current_time, dry_run=dry_run)
        except Exception as e:
            logger.bind(error=str(e)).error("send_reports_job_failed")
            raise

    if summary is None:
        return False

    logger.bind(sent=summary.sent_count, errors=summary.error_count).info(
        "send_reports_job_completed"
    )
    return True


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Send due weekly and monthly email reports")
    parser.add_argument(
        "--current-time",
        type=str,
        default=None,
        help="Reference instant (ISO-8601). Default: now",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log reports instead of sending; do not record them as sent",
    )
    args = parser.parse_args()

    ok = asyncio.run(main(current_time=args.current_time, dry_run=args.dry_run))
    sys.exit(0 if ok else 1)

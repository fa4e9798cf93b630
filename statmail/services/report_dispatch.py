"""Timezone-aware report dispatch service.

Sends weekly and monthly site reports once per period, on the first local
day of the period from the configured start hour. Meant to be triggered
hourly; the ledger makes repeated or overlapping runs harmless apart from
the rare duplicate described below.

A run has two phases:

1. Plan: for each cadence, enumerate active subscriptions, evaluate each
   site's local window and drop periods the ledger has already seen. All
   timezones are evaluated here, so a bad one aborts the run before any
   email goes out.
2. Deliver: per site, assemble the report, send it to every recipient,
   then write the ledger entry once. Sites are processed concurrently;
   ledger writes go through a single lock because they share the session.

The ledger check and the ledger write are separate statements. Two runs
racing on the same site can both pass the check and both deliver; the
unique constraint still leaves a single ledger row.
"""

import asyncio
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from statmail.config import ReportsConfig, Settings, get_config, get_settings
from statmail.core.cadence import Cadence, PeriodId, in_window, period_label, report_range
from statmail.core.datetime_utils import to_aware_utc
from statmail.core.errors import AssemblyError, DeliveryError, LedgerError
from statmail.core.logging import get_logger
from statmail.core.security import build_unsubscribe_link
from statmail.services.ledger import PeriodLedger
from statmail.services.notifier import Notifier
from statmail.services.report_assembler import MetricsPayload, ReportAssembler
from statmail.services.subscribers import Subscriber, get_active_subscribers

logger = get_logger(__name__)

CADENCES = (Cadence.WEEKLY, Cadence.MONTHLY)


@dataclass
class CadenceStats:
    """Counters for one cadence within a run."""

    candidates: int = 0
    eligible: int = 0
    already_sent: int = 0
    sent: int = 0
    recipients_sent: int = 0
    assembly_errors: int = 0
    delivery_errors: int = 0
    ledger_errors: int = 0
    unexpected_errors: int = 0


@dataclass
class DispatchSummary:
    """Outcome of one dispatch run."""

    reference_instant: datetime
    cadences: dict[str, CadenceStats] = field(
        default_factory=lambda: {c.value: CadenceStats() for c in CADENCES}
    )

    def for_cadence(self, cadence: Cadence) -> CadenceStats:
        return self.cadences[cadence.value]

    @property
    def sent_count(self) -> int:
        return sum(s.sent for s in self.cadences.values())

    @property
    def error_count(self) -> int:
        return sum(
            s.assembly_errors + s.delivery_errors + s.ledger_errors + s.unexpected_errors
            for s in self.cadences.values()
        )

    def as_dict(self) -> dict:
        return {
            "reference_instant": self.reference_instant.isoformat(),
            **{name: asdict(stats) for name, stats in self.cadences.items()},
        }


@dataclass(frozen=True)
class PlannedReport:
    """An eligible, not yet sent (site, cadence, period)."""

    subscriber: Subscriber
    cadence: Cadence
    period: PeriodId


async def plan_cadence(
    ledger: PeriodLedger,
    subscribers: list[Subscriber],
    reference_instant: datetime,
    cadence: Cadence,
    start_hour: int,
    stats: CadenceStats,
) -> list[PlannedReport]:
    """Filter subscribers to those in their window with no ledger entry.

    Raises:
        ConfigurationError: If any subscriber has an invalid timezone
    """
    stats.candidates = len(subscribers)

    eligible: dict[tuple, Subscriber] = {}
    for subscriber in subscribers:
        window = in_window(reference_instant, subscriber.timezone, cadence, start_hour)
        if window.eligible:
            eligible[(subscriber.site_id, window.period)] = subscriber

    stats.eligible = len(eligible)

    unseen = await ledger.unseen(cadence, eligible.keys())
    stats.already_sent = len(eligible) - len(unseen)

    return [PlannedReport(eligible[key], cadence, key[1]) for key in unseen]


async def assemble_report(
    assembler: ReportAssembler,
    planned: PlannedReport,
    reference_instant: datetime,
    timeout: float,
) -> MetricsPayload:
    """Run the assembler for the previous completed period.

    Raises:
        AssemblyError: On any assembler failure, including timeouts
    """
    subscriber = planned.subscriber
    query_range = report_range(reference_instant, subscriber.timezone, planned.cadence)

    try:
        return await asyncio.wait_for(assembler.assemble(subscriber, query_range), timeout)
    except AssemblyError:
        raise
    except TimeoutError as e:
        raise AssemblyError(f"Report assembly timed out after {timeout}s") from e
    except Exception as e:
        raise AssemblyError(str(e)) from e


async def deliver_report(
    notifier: Notifier,
    planned: PlannedReport,
    payload: MetricsPayload,
    label: str,
    timeout: float,
    stats: CadenceStats,
    settings: Settings,
) -> None:
    """Send the report to every recipient, isolating per-recipient failures."""
    subscriber = planned.subscriber
    cadence = planned.cadence.value

    for email in subscriber.recipients:
        unsubscribe_link = build_unsubscribe_link(subscriber.domain, cadence, email, settings)
        logger.bind(domain=subscriber.domain, email=email, cadence=cadence).info(
            "report_sending"
        )

        try:
            await asyncio.wait_for(
                notifier.send(email, subscriber.display_name, label, unsubscribe_link, payload),
                timeout,
            )
        except TimeoutError:
            error = DeliveryError(f"Delivery timed out after {timeout}s")
        except Exception as e:
            error = e if isinstance(e, DeliveryError) else DeliveryError(str(e))
        else:
            stats.recipients_sent += 1
            continue

        stats.delivery_errors += 1
        logger.bind(
            domain=subscriber.domain,
            email=email,
            cadence=cadence,
            error=str(error),
        ).error("report_delivery_failed")


async def run_report_dispatch(
    db: AsyncSession,
    reference_instant: datetime,
    assembler: ReportAssembler,
    notifier: Notifier,
    settings: Settings | None = None,
    reports_config: ReportsConfig | None = None,
    record_ledger: bool = True,
) -> DispatchSummary:
    """Send weekly and monthly reports due at the reference instant.

    Args:
        db: Database session (used for subscriber reads and the ledger)
        reference_instant: The run's instant; naive values are UTC
        assembler: Report data source
        notifier: Delivery channel
        settings: Overrides the cached settings (base URL, secret key)
        reports_config: Overrides the cached report config
        record_ledger: Write ledger entries (False for dry runs)

    Returns:
        DispatchSummary with per-cadence counters

    Raises:
        ConfigurationError: If a subscriber timezone is invalid; nothing is sent
    """
    settings = settings or get_settings()
    reports_config = reports_config or get_config().reports
    reference_instant = to_aware_utc(reference_instant)

    summary = DispatchSummary(reference_instant=reference_instant)
    ledger = PeriodLedger(db)

    planned: list[PlannedReport] = []
    for cadence in CADENCES:
        subscribers = await get_active_subscribers(db, cadence)
        planned.extend(
            await plan_cadence(
                ledger,
                subscribers,
                reference_instant,
                cadence,
                reports_config.start_hour,
                summary.for_cadence(cadence),
            )
        )

    semaphore = asyncio.Semaphore(max(1, reports_config.max_concurrency))
    ledger_lock = asyncio.Lock()

    async def process(report: PlannedReport) -> None:
        stats = summary.for_cadence(report.cadence)
        subscriber = report.subscriber

        async with semaphore:
            try:
                payload = await assemble_report(
                    assembler,
                    report,
                    reference_instant,
                    reports_config.assembly_timeout_seconds,
                )
            except AssemblyError as e:
                stats.assembly_errors += 1
                logger.bind(
                    domain=subscriber.domain,
                    cadence=report.cadence.value,
                    error=str(e),
                ).error("report_assembly_failed")
                return

            label = period_label(reference_instant, subscriber.timezone, report.cadence)
            await deliver_report(
                notifier,
                report,
                payload,
                label,
                reports_config.delivery_timeout_seconds,
                stats,
                settings,
            )

        if not record_ledger:
            stats.sent += 1
            return

        async with ledger_lock:
            try:
                inserted = await ledger.mark_sent(
                    subscriber.site_id, report.cadence, report.period, reference_instant
                )
            except LedgerError as e:
                stats.ledger_errors += 1
                logger.bind(
                    domain=subscriber.domain,
                    cadence=report.cadence.value,
                    period=f"{report.period.year}-{report.period.number}",
                    error=str(e),
                ).error("report_ledger_write_failed")
                return

        if not inserted:
            logger.bind(
                domain=subscriber.domain,
                cadence=report.cadence.value,
                period=f"{report.period.year}-{report.period.number}",
            ).warning("report_ledger_duplicate")

        stats.sent += 1
        logger.bind(
            domain=subscriber.domain,
            cadence=report.cadence.value,
            recipients=len(subscriber.recipients),
        ).info("report_sent")

    results = await asyncio.gather(
        *(process(report) for report in planned), return_exceptions=True
    )
    for report, result in zip(planned, results, strict=True):
        if isinstance(result, Exception):
            summary.for_cadence(report.cadence).unexpected_errors += 1
            logger.bind(
                domain=report.subscriber.domain,
                cadence=report.cadence.value,
                error=repr(result),
            ).error("report_dispatch_task_failed")

    logger.bind(
        reference_instant=reference_instant.isoformat(),
        sent=summary.sent_count,
        errors=summary.error_count,
    ).info("report_dispatch_completed")

    return summary

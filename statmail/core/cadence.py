"""Cadence window evaluation.

Pure calendar logic for deciding whether a site is inside its local
delivery window and which period a run belongs to. Nothing here reads the
clock or touches storage; callers pass the reference instant explicitly.

    window = in_window(instant, "America/New_York", Cadence.WEEKLY)
    if window.eligible:
        ...  # window.period == PeriodId(2026, 43)
"""

import calendar
import enum
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import NamedTuple

from statmail.core.datetime_utils import to_local

DEFAULT_START_HOUR = 9


class Cadence(str, enum.Enum):
    """Recurrence class of a report subscription."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"


class PeriodId(NamedTuple):
    """Calendar key naming one occurrence of a cadence.

    (ISO year, ISO week) for weekly, (year, month) for monthly.
    """

    year: int
    number: int


class Window(NamedTuple):
    eligible: bool
    period: PeriodId


@dataclass(frozen=True)
class ReportRange:
    """Inclusive range of local dates a report covers."""

    cadence: Cadence
    first: date
    last: date

    @property
    def days(self) -> int:
        return (self.last - self.first).days + 1

    def shift_back(self) -> "ReportRange":
        """The immediately preceding equivalent range."""
        if self.cadence == Cadence.MONTHLY:
            return _month_range(_previous_month_start(self.first))
        delta = timedelta(days=self.days)
        return ReportRange(self.cadence, self.first - delta, self.last - delta)


def period_for(local: datetime | date, cadence: Cadence) -> PeriodId:
    """Period identifier for a local calendar position."""
    if cadence == Cadence.WEEKLY:
        iso = local.isocalendar()
        return PeriodId(iso.year, iso.week)
    return PeriodId(local.year, local.month)


def in_window(
    reference_instant: datetime,
    timezone: str,
    cadence: Cadence,
    start_hour: int = DEFAULT_START_HOUR,
) -> Window:
    """Decide whether the reference instant falls in the site's delivery window.

    The window is the first local day of the period (Monday for weekly,
    the 1st for monthly) from start_hour until local midnight. Local
    wall-clock fields decide, so DST shifts only matter through them.

    Args:
        reference_instant: The run's reference instant (naive means UTC)
        timezone: Site IANA timezone
        cadence: Weekly or monthly
        start_hour: First local hour of the window

    Returns:
        Window with the eligibility flag and the local period identifier

    Raises:
        ConfigurationError: If the timezone is not a valid IANA name
    """
    local = to_local(reference_instant, timezone)

    if cadence == Cadence.WEEKLY:
        first_day = local.weekday() == calendar.MONDAY
    else:
        first_day = local.day == 1

    return Window(
        eligible=first_day and local.hour >= start_hour,
        period=period_for(local, cadence),
    )


def _previous_month_start(day: date) -> date:
    first = day.replace(day=1)
    return (first - timedelta(days=1)).replace(day=1)


def _month_range(first: date) -> ReportRange:
    last_day = calendar.monthrange(first.year, first.month)[1]
    return ReportRange(Cadence.MONTHLY, first, first.replace(day=last_day))


def report_range(reference_instant: datetime, timezone: str, cadence: Cadence) -> ReportRange:
    """Range of the previous completed period, in the site's local dates.

    Weekly reports cover the trailing seven complete local days; monthly
    reports cover the calendar month before the local month of the instant.
    """
    today = to_local(reference_instant, timezone).date()

    if cadence == Cadence.WEEKLY:
        return ReportRange(cadence, today - timedelta(days=7), today - timedelta(days=1))

    return _month_range(_previous_month_start(today))


def period_label(reference_instant: datetime, timezone: str, cadence: Cadence) -> str:
    """Human label used in the subject line: "Weekly" or the reported month's name."""
    if cadence == Cadence.WEEKLY:
        return "Weekly"
    reported = report_range(reference_instant, timezone, cadence)
    return calendar.month_name[reported.first.month]

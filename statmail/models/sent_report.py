"""Ledger tables recording which report periods were already sent.

One table per cadence. A row is the sole authority that a site's report for
that period went out; the unique constraint keeps it at one row per period.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Integer, UniqueConstraint, Uuid
from sqlalchemy.orm import InstrumentedAttribute, Mapped, mapped_column

from statmail.core.cadence import Cadence
from statmail.models.base import Base


class SentWeeklyReport(Base):
    """A weekly report delivered for (site, ISO year, ISO week)."""

    __tablename__ = "sent_weekly_reports"
    __table_args__ = (UniqueConstraint("site_id", "year", "week", name="uq_sent_weekly_period"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sites.id", ondelete="CASCADE"), index=True
    )
    year: Mapped[int] = mapped_column(Integer)
    week: Mapped[int] = mapped_column(Integer)
    sent_at: Mapped[datetime] = mapped_column()

    def __repr__(self) -> str:
        return f"<SentWeeklyReport site={self.site_id} {self.year}-W{self.week:02d}>"


class SentMonthlyReport(Base):
    """A monthly report delivered for (site, year, month)."""

    __tablename__ = "sent_monthly_reports"
    __table_args__ = (
        UniqueConstraint("site_id", "year", "month", name="uq_sent_monthly_period"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sites.id", ondelete="CASCADE"), index=True
    )
    year: Mapped[int] = mapped_column(Integer)
    month: Mapped[int] = mapped_column(Integer)
    sent_at: Mapped[datetime] = mapped_column()

    def __repr__(self) -> str:
        return f"<SentMonthlyReport site={self.site_id} {self.year}-{self.month:02d}>"


SentReport = type[SentWeeklyReport] | type[SentMonthlyReport]


def ledger_model(cadence: Cadence) -> tuple[SentReport, InstrumentedAttribute[int]]:
    """Ledger model for a cadence and its period-number column."""
    if cadence == Cadence.WEEKLY:
        return SentWeeklyReport, SentWeeklyReport.week
    return SentMonthlyReport, SentMonthlyReport.month

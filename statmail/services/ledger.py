"""Period ledger: the durable record of report periods already sent.

The ledger is the only persisted dispatch state. Eligibility is recomputed
from the calendar on every run; a ledger row is what turns an eligible site
into a skipped one.
"""

import uuid
from collections.abc import Iterable
from datetime import datetime

from sqlalchemy import insert, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from statmail.core.cadence import Cadence, PeriodId
from statmail.core.datetime_utils import to_naive_utc
from statmail.core.errors import LedgerError
from statmail.core.logging import get_logger
from statmail.models.sent_report import ledger_model

logger = get_logger(__name__)

LedgerKey = tuple[uuid.UUID, PeriodId]

_UPSERT_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class PeriodLedger:
    """Existence checks and insert-if-absent writes against the sent-report tables."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def has_sent(self, site_id: uuid.UUID, cadence: Cadence, period: PeriodId) -> bool:
        """True iff a ledger entry exists for the site, cadence and period."""
        model, number = ledger_model(cadence)
        result = await self.db.execute(
            select(model.id)
            .where(
                model.site_id == site_id,
                model.year == period.year,
                number == period.number,
            )
            .limit(1)
        )
        return result.first() is not None

    async def unseen(self, cadence: Cadence, keys: Iterable[LedgerKey]) -> list[LedgerKey]:
        """Filter keys down to those without a ledger entry, in one query.

        Candidates in different timezones can sit in different periods, so the
        query over-selects on (site, year, number) membership and the exact
        pairs are matched here.

        Args:
            cadence: Weekly or monthly
            keys: (site_id, period) pairs, in caller order

        Returns:
            The keys with no ledger entry, preserving order
        """
        keys = list(keys)
        if not keys:
            return []

        model, number = ledger_model(cadence)
        result = await self.db.execute(
            select(model.site_id, model.year, number).where(
                model.site_id.in_({site_id for site_id, _ in keys}),
                model.year.in_({period.year for _, period in keys}),
                number.in_({period.number for _, period in keys}),
            )
        )
        seen = {(site_id, PeriodId(year, num)) for site_id, year, num in result.all()}
        return [key for key in keys if key not in seen]

    async def mark_sent(
        self,
        site_id: uuid.UUID,
        cadence: Cadence,
        period: PeriodId,
        at: datetime,
    ) -> bool:
        """Record the period as sent and commit.

        Insert-if-absent against the period's unique constraint, so an
        overlapping run cannot create a second row.

        Args:
            site_id: Site the report was for
            cadence: Weekly or monthly
            period: Period identifier in the site's local calendar
            at: Reference instant of the run that fulfilled the period

        Returns:
            True if a new entry was written, False if one already existed

        Raises:
            LedgerError: If the write fails
        """
        model, number = ledger_model(cadence)
        values = {
            "id": uuid.uuid4(),
            "site_id": site_id,
            "year": period.year,
            number.key: period.number,
            "sent_at": to_naive_utc(at),
        }

        dialect = self.db.get_bind().dialect.name
        upsert_insert = _UPSERT_INSERTS.get(dialect)

        try:
            if upsert_insert is not None:
                stmt = (
                    upsert_insert(model)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["site_id", "year", number.key])
                )
                result = await self.db.execute(stmt)
                await self.db.commit()
                return result.rowcount == 1

            try:
                await self.db.execute(insert(model).values(**values))
                await self.db.commit()
                return True
            except IntegrityError:
                await self.db.rollback()
                return False
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise LedgerError(
                f"Failed to record {cadence.value} report {period} for site {site_id}"
            ) from e

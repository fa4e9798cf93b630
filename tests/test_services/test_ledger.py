"""Tests for the period ledger."""

import uuid
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from statmail.core.cadence import Cadence, PeriodId
from statmail.core.errors import LedgerError
from statmail.services.ledger import PeriodLedger

pytestmark = pytest.mark.asyncio

AT = datetime(2026, 10, 19, 13, 15, tzinfo=UTC)


class TestMarkSent:
    """Tests for PeriodLedger.mark_sent."""

    async def test_first_write_inserts(self, db_session, site_factory, count_ledger):
        site = await site_factory(weekly=["a@x.test"])
        ledger = PeriodLedger(db_session)

        inserted = await ledger.mark_sent(site.id, Cadence.WEEKLY, PeriodId(2026, 43), AT)

        assert inserted is True
        assert await count_ledger(Cadence.WEEKLY, site.id) == 1

    async def test_second_write_is_a_no_op(self, db_session, site_factory, count_ledger):
        """Writes are insert-if-absent; the existing row wins."""
        site = await site_factory(weekly=["a@x.test"])
        ledger = PeriodLedger(db_session)

        await ledger.mark_sent(site.id, Cadence.WEEKLY, PeriodId(2026, 43), AT)
        inserted = await ledger.mark_sent(site.id, Cadence.WEEKLY, PeriodId(2026, 43), AT)

        assert inserted is False
        assert await count_ledger(Cadence.WEEKLY, site.id) == 1

    async def test_cadences_are_independent(self, db_session, site_factory, count_ledger):
        """Week 10 and month 10 of the same year are different periods."""
        site = await site_factory(weekly=["a@x.test"], monthly=["a@x.test"])
        ledger = PeriodLedger(db_session)

        assert await ledger.mark_sent(site.id, Cadence.WEEKLY, PeriodId(2026, 10), AT)
        assert await ledger.mark_sent(site.id, Cadence.MONTHLY, PeriodId(2026, 10), AT)

        assert await count_ledger(Cadence.WEEKLY, site.id) == 1
        assert await count_ledger(Cadence.MONTHLY, site.id) == 1

    async def test_write_failure_raises_ledger_error(self, db_session, site_factory):
        site = await site_factory(weekly=["a@x.test"])
        ledger = PeriodLedger(db_session)

        with (
            patch.object(
                db_session,
                "execute",
                side_effect=OperationalError("INSERT", {}, Exception("disk I/O error")),
            ),
            pytest.raises(LedgerError, match="weekly"),
        ):
            await ledger.mark_sent(site.id, Cadence.WEEKLY, PeriodId(2026, 43), AT)


class TestHasSent:
    """Tests for PeriodLedger.has_sent."""

    async def test_reflects_writes(self, db_session, site_factory):
        site = await site_factory(monthly=["a@x.test"])
        ledger = PeriodLedger(db_session)

        assert await ledger.has_sent(site.id, Cadence.MONTHLY, PeriodId(2026, 11)) is False

        await ledger.mark_sent(site.id, Cadence.MONTHLY, PeriodId(2026, 11), AT)

        assert await ledger.has_sent(site.id, Cadence.MONTHLY, PeriodId(2026, 11)) is True
        assert await ledger.has_sent(site.id, Cadence.MONTHLY, PeriodId(2026, 12)) is False
        assert await ledger.has_sent(site.id, Cadence.WEEKLY, PeriodId(2026, 11)) is False


class TestUnseen:
    """Tests for PeriodLedger.unseen."""

    async def test_empty_input(self, db_session):
        assert await PeriodLedger(db_session).unseen(Cadence.WEEKLY, []) == []

    async def test_filters_exact_pairs(self, db_session, site_factory):
        """Sites in different periods must not shadow each other."""
        first = await site_factory(domain="a.example", weekly=["a@x.test"])
        second = await site_factory(domain="b.example", weekly=["b@x.test"])
        ledger = PeriodLedger(db_session)

        await ledger.mark_sent(first.id, Cadence.WEEKLY, PeriodId(2026, 43), AT)
        await ledger.mark_sent(second.id, Cadence.WEEKLY, PeriodId(2026, 42), AT)

        keys = [
            (first.id, PeriodId(2026, 42)),
            (second.id, PeriodId(2026, 43)),
            (first.id, PeriodId(2026, 43)),
        ]

        unseen = await ledger.unseen(Cadence.WEEKLY, keys)

        assert unseen == [(first.id, PeriodId(2026, 42)), (second.id, PeriodId(2026, 43))]

    async def test_unknown_site_is_unseen(self, db_session):
        key = (uuid.uuid4(), PeriodId(2026, 43))

        assert await PeriodLedger(db_session).unseen(Cadence.WEEKLY, [key]) == [key]

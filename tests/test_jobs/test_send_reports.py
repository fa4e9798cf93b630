"""Tests for the report job entry point."""

import pytest

from statmail.core.cadence import Cadence
from statmail.jobs.send_reports import run_send_reports

pytestmark = pytest.mark.asyncio


class TestRunSendReports:
    """Tests for run_send_reports."""

    async def test_runs_at_given_instant(
        self, db_session, site_factory, fake_assembler, recording_notifier, count_ledger
    ):
        site = await site_factory(timezone="America/New_York", weekly=["a@x.test"])

        summary = await run_send_reports(
            db_session,
            "2026-10-19T13:15:00Z",
            assembler=fake_assembler,
            notifier=recording_notifier,
        )

        assert summary is not None
        assert summary.sent_count == 1
        assert summary.reference_instant.isoformat() == "2026-10-19T13:15:00+00:00"
        assert await count_ledger(Cadence.WEEKLY, site.id) == 1

    async def test_unparsable_instant_aborts(self, db_session, fake_assembler, recording_notifier):
        summary = await run_send_reports(
            db_session,
            "next monday",
            assembler=fake_assembler,
            notifier=recording_notifier,
        )

        assert summary is None
        assert fake_assembler.calls == []

    async def test_invalid_site_timezone_aborts(
        self, db_session, site_factory, fake_assembler, recording_notifier
    ):
        await site_factory(timezone="Not/AZone", weekly=["a@x.test"])

        summary = await run_send_reports(
            db_session,
            "2026-10-19T13:15:00Z",
            assembler=fake_assembler,
            notifier=recording_notifier,
        )

        assert summary is None
        assert recording_notifier.sent == []

    async def test_dry_run_logs_and_skips_ledger(
        self, db_session, site_factory, fake_assembler, count_ledger
    ):
        await site_factory(timezone="America/New_York", weekly=["a@x.test", "b@x.test"])

        summary = await run_send_reports(
            db_session,
            "2026-10-19T13:15:00Z",
            dry_run=True,
            assembler=fake_assembler,
        )

        assert summary is not None
        assert summary.for_cadence(Cadence.WEEKLY).recipients_sent == 2
        assert await count_ledger(Cadence.WEEKLY) == 0

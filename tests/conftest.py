"""
Pytest configuration and fixtures for Statmail tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for sites and subscriptions
- In-memory report assembler and notifier doubles
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from datetime import date

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from statmail.api.reports import get_notifier, get_report_assembler
from statmail.config import ReportsConfig, Settings, get_settings
from statmail.core.cadence import Cadence, ReportRange
from statmail.core.database import get_db
from statmail.core.errors import AssemblyError, DeliveryError
from statmail.main import app
from statmail.models import Base
from statmail.models.sent_report import ledger_model
from statmail.models.site import ReportSubscription, Site
from statmail.services.report_assembler import MetricsPayload
from statmail.services.subscribers import Subscriber

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    resend_api_key: str = ""
    secret_key: str = "test-secret-key"
    base_url: str = "https://reports.test"
    stats_api_url: str = "http://stats.test"
    job_token: str = ""
    scheduler_enabled: bool = False


@pytest.fixture
def test_settings() -> Settings:
    return TestSettings()


@pytest.fixture
def reports_config() -> ReportsConfig:
    """Report config with defaults, independent of any config.yml on disk."""
    return ReportsConfig({"assembly_timeout_seconds": 1, "delivery_timeout_seconds": 1})


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()


# ============================================================================
# Report doubles
# ============================================================================


def make_payload(report_range: ReportRange, pageviews: int = 1200) -> MetricsPayload:
    return MetricsPayload(
        report_range=report_range,
        pageviews=pageviews,
        unique_visitors=400,
        change_pageviews=20,
        change_visitors=-5,
        bounce_rate=41,
        change_bounce_rate=3,
        top_referrers=[{"name": "news.ycombinator.com", "visitors": 120}],
        top_pages=[{"name": "/", "visitors": 300}],
    )


class FakeAssembler:
    """Assembler double that records calls and can fail or stall per domain."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, ReportRange]] = []
        self.fail_for: set[str] = set()
        self.stall_for: set[str] = set()

    async def assemble(self, subscriber: Subscriber, report_range: ReportRange) -> MetricsPayload:
        self.calls.append((subscriber.domain, report_range))
        if subscriber.domain in self.fail_for:
            raise AssemblyError("stats unavailable")
        if subscriber.domain in self.stall_for:
            await asyncio.sleep(10)
        return make_payload(report_range)


class RecordingNotifier:
    """Notifier double that records every send and can fail or stall per recipient."""

    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.fail_for: set[str] = set()
        self.stall_for: set[str] = set()

    async def send(
        self,
        recipient: str,
        display_name: str,
        period_label: str,
        unsubscribe_link: str,
        payload: MetricsPayload,
    ) -> None:
        if recipient in self.fail_for:
            raise DeliveryError("mailbox unavailable")
        if recipient in self.stall_for:
            await asyncio.sleep(10)
        self.sent.append(
            {
                "recipient": recipient,
                "display_name": display_name,
                "period_label": period_label,
                "unsubscribe_link": unsubscribe_link,
                "payload": payload,
            }
        )


@pytest.fixture
def fake_assembler() -> FakeAssembler:
    return FakeAssembler()


@pytest.fixture
def recording_notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def site_factory(db_session: AsyncSession):
    """Factory for creating test sites with report subscriptions."""

    async def _create_site(
        domain: str | None = None,
        timezone: str = "Etc/UTC",
        weekly: list[str] | None = None,
        monthly: list[str] | None = None,
    ) -> Site:
        if domain is None:
            domain = f"site-{uuid.uuid4().hex[:8]}.example"

        site = Site(domain=domain, timezone=timezone)
        db_session.add(site)
        await db_session.flush()

        for cadence, recipients in ((Cadence.WEEKLY, weekly), (Cadence.MONTHLY, monthly)):
            if recipients is not None:
                db_session.add(
                    ReportSubscription(site_id=site.id, cadence=cadence, recipients=recipients)
                )

        await db_session.flush()
        return site

    return _create_site


@pytest.fixture
def count_ledger(db_session: AsyncSession):
    """Count ledger rows for a cadence, optionally for one site."""

    async def _count(cadence: Cadence, site_id: uuid.UUID | None = None) -> int:
        model, _ = ledger_model(cadence)
        query = select(func.count(model.id))
        if site_id is not None:
            query = query.where(model.site_id == site_id)
        result = await db_session.execute(query)
        return result.scalar() or 0

    return _count


# ============================================================================
# API client
# ============================================================================


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    fake_assembler: FakeAssembler,
    recording_notifier: RecordingNotifier,
) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database and collaborator overrides."""

    async def override_get_db():
        yield db_session

    def override_get_settings():
        return TestSettings()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_report_assembler] = lambda: fake_assembler
    app.dependency_overrides[get_notifier] = lambda: recording_notifier

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def october_week() -> ReportRange:
    return ReportRange(Cadence.WEEKLY, date(2026, 10, 12), date(2026, 10, 18))


@pytest.fixture
def report_payload(october_week: ReportRange) -> MetricsPayload:
    return make_payload(october_week)

"""Read-only view of sites with active report subscriptions."""

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from statmail.core.cadence import Cadence
from statmail.models.site import ReportSubscription, Site


@dataclass(frozen=True)
class Subscriber:
    """What the dispatcher needs to know about one subscribed site."""

    site_id: uuid.UUID
    domain: str
    timezone: str
    recipients: tuple[str, ...]

    @property
    def display_name(self) -> str:
        return self.domain


def unique_recipients(addresses: list[str]) -> tuple[str, ...]:
    """Strip blanks and drop repeats of the same address, ignoring case."""
    seen: dict[str, str] = {}
    for address in addresses:
        address = (address or "").strip()
        if address:
            seen.setdefault(address.lower(), address)
    return tuple(seen.values())


async def get_active_subscribers(db: AsyncSession, cadence: Cadence) -> list[Subscriber]:
    """Sites with an active subscription for the cadence.

    Subscriptions without recipients are not active. Recipients are
    de-duplicated case-insensitively, keeping the first spelling and order.

    Args:
        db: Database session
        cadence: Weekly or monthly

    Returns:
        One Subscriber per site, ordered by domain
    """
    result = await db.execute(
        select(Site.id, Site.domain, Site.timezone, ReportSubscription.recipients)
        .join(ReportSubscription, ReportSubscription.site_id == Site.id)
        .where(
            ReportSubscription.cadence == cadence,
            ReportSubscription.is_active == True,  # noqa: E712
        )
        .order_by(Site.domain)
    )

    subscribers = []
    for site_id, domain, timezone, recipients in result.all():
        recipients = unique_recipients(recipients or [])
        if recipients:
            subscribers.append(Subscriber(site_id, domain, timezone, recipients))
    return subscribers

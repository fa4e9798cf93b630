from __future__ import annotations

import uuid

from sqlalchemy import JSON, Boolean, Enum, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from statmail.core.cadence import Cadence
from statmail.models.base import Base, TimestampMixin


class Site(Base, TimestampMixin):
    """A tracked site. The subscriber that report emails are about.

    Owned by account management; the dispatcher only reads it.
    """

    __tablename__ = "sites"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    domain: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    timezone: Mapped[str] = mapped_column(String(64), default="Etc/UTC")

    # Relationships
    subscriptions: Mapped[list[ReportSubscription]] = relationship(
        back_populates="site", lazy="selectin", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Site {self.domain}>"


class ReportSubscription(Base, TimestampMixin):
    """Recipients of one cadence of email reports for a site."""

    __tablename__ = "report_subscriptions"
    __table_args__ = (UniqueConstraint("site_id", "cadence", name="uq_site_cadence"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    site_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("sites.id", ondelete="CASCADE"), index=True
    )
    cadence: Mapped[Cadence] = mapped_column(
        Enum(
            Cadence,
            values_callable=lambda e: [x.value for x in e],
            name="reportcadence",
            native_enum=False,
        )
    )
    recipients: Mapped[list[str]] = mapped_column(JSON, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    # Relationships
    site: Mapped[Site] = relationship(back_populates="subscriptions", lazy="selectin")

    def __repr__(self) -> str:
        return f"<ReportSubscription {self.cadence.value} site={self.site_id}>"

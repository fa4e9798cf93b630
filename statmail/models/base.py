from datetime import datetime

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from statmail.core.datetime_utils import utc_now


class Base(DeclarativeBase):
    """Declarative base shared by the site, ledger and job tables."""


class TimestampMixin:
    """Adds a naive-UTC created_at, set on insert."""

    created_at: Mapped[datetime] = mapped_column(default=utc_now)

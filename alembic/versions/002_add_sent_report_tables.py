"""Add sent_weekly_reports and sent_monthly_reports ledger tables

Revision ID: 002_add_sent_reports
Revises: 001_initial_schema
Create Date: 2026-10-06

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002_add_sent_reports"
down_revision: str = "001_initial_schema"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _create_ledger_table(name: str, number_column: str) -> None:
    op.create_table(
        name,
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "site_id",
            sa.Uuid(),
            sa.ForeignKey("sites.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        ),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column(number_column, sa.Integer(), nullable=False),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
    )


def upgrade() -> None:
    _create_ledger_table("sent_weekly_reports", "week")
    op.create_unique_constraint(
        "uq_sent_weekly_period",
        "sent_weekly_reports",
        ["site_id", "year", "week"],
    )

    _create_ledger_table("sent_monthly_reports", "month")
    op.create_unique_constraint(
        "uq_sent_monthly_period",
        "sent_monthly_reports",
        ["site_id", "year", "month"],
    )


def downgrade() -> None:
    op.drop_table("sent_monthly_reports")
    op.drop_table("sent_weekly_reports")

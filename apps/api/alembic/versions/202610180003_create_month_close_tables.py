"""create month close snapshot, archive and ledger tables

Revision ID: 202610180003
Revises: 202610180002
Create Date: 2026-10-18 00:03:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180003"
down_revision: str | None = "202610180002"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "monthly_snapshot",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("snapshot_month", sa.Integer(), nullable=False),
        sa.Column("snapshot_year", sa.Integer(), nullable=False),
        sa.Column("total_weighted_forecast", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.Column("total_deal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.CheckConstraint("snapshot_month >= 1 AND snapshot_month <= 12", name="ck_monthly_snapshot_month"),
        sa.UniqueConstraint("snapshot_month", "snapshot_year", name="uq_monthly_snapshot_period"),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "monthly_snapshot_breakdown",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("snapshot_id", sa.Uuid(), nullable=False),
        sa.Column("breakdown_type", sa.String(length=32), nullable=False),
        sa.Column("breakdown_name", sa.String(length=255), nullable=False),
        sa.Column("deal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("forecast_value", sa.Numeric(18, 6), nullable=False, server_default="0"),
        sa.CheckConstraint("breakdown_type IN ('product', 'partner')", name="ck_snapshot_breakdown_type"),
        sa.ForeignKeyConstraint(["snapshot_id"], ["monthly_snapshot.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_snapshot_breakdown_snapshot",
        "monthly_snapshot_breakdown",
        ["snapshot_id"],
        unique=False,
    )

    op.create_table(
        "archived_deal",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("original_deal_id", sa.Uuid(), nullable=True),
        sa.Column("deal_name", sa.String(length=255), nullable=False),
        sa.Column("contact_name", sa.String(length=255), nullable=True),
        sa.Column("source_name", sa.String(length=255), nullable=True),
        sa.Column("partner_name", sa.String(length=255), nullable=True),
        sa.Column("platform_name", sa.String(length=255), nullable=True),
        sa.Column("product_name", sa.String(length=255), nullable=True),
        sa.Column("deal_stage_name", sa.String(length=255), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False),
        sa.Column("open_date", sa.Date(), nullable=True),
        sa.Column("close_month", sa.Integer(), nullable=True),
        sa.Column("close_year", sa.Integer(), nullable=True),
        sa.Column("deal_value", sa.Numeric(18, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("archived_for_month", sa.Integer(), nullable=False),
        sa.Column("archived_for_year", sa.Integer(), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('won', 'lost')", name="ck_archived_deal_status"),
        sa.CheckConstraint(
            "archived_for_month >= 1 AND archived_for_month <= 12",
            name="ck_archived_deal_archived_for_month",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_archived_deal_status_period",
        "archived_deal",
        ["status", "archived_for_year", "archived_for_month"],
        unique=False,
    )

    op.create_table(
        "close_month_log",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("closed_month", sa.Integer(), nullable=False),
        sa.Column("closed_year", sa.Integer(), nullable=False),
        sa.Column("closed_by", sa.String(length=16), nullable=False, server_default="manual"),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("closed_by IN ('manual', 'auto')", name="ck_close_month_log_closed_by"),
        sa.UniqueConstraint("closed_month", "closed_year", name="uq_close_month_log_period"),
        sa.PrimaryKeyConstraint("id"),
    )


def downgrade() -> None:
    op.drop_table("close_month_log")

    op.drop_index("ix_archived_deal_status_period", table_name="archived_deal")
    op.drop_table("archived_deal")

    op.drop_index("ix_snapshot_breakdown_snapshot", table_name="monthly_snapshot_breakdown")
    op.drop_table("monthly_snapshot_breakdown")

    op.drop_table("monthly_snapshot")

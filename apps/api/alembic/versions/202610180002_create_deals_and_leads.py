"""create deals and leads

Revision ID: 202610180002
Revises: 202610180001
Create Date: 2026-10-18 00:02:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180002"
down_revision: str | None = "202610180001"
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "deal",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("deal_name", sa.String(length=255), nullable=False),
        sa.Column("contact_name", sa.String(length=255), nullable=True),
        sa.Column("source_id", sa.Uuid(), nullable=True),
        sa.Column("partner_id", sa.Uuid(), nullable=True),
        sa.Column("platform_id", sa.Uuid(), nullable=True),
        sa.Column("product_id", sa.Uuid(), nullable=True),
        sa.Column("deal_stage_id", sa.Uuid(), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column("open_date", sa.Date(), nullable=False),
        sa.Column("close_month", sa.Integer(), nullable=True),
        sa.Column("close_year", sa.Integer(), nullable=True),
        sa.Column("deal_value", sa.Numeric(18, 2), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("next_step_date", sa.Date(), nullable=True),
        sa.Column("is_priority", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("row_color", sa.String(length=32), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('active', 'keep_warm', 'won', 'lost')", name="ck_deal_status"),
        sa.CheckConstraint(
            "close_month IS NULL OR (close_month >= 1 AND close_month <= 12)",
            name="ck_deal_close_month",
        ),
        sa.ForeignKeyConstraint(["source_id"], ["list_item.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["partner_id"], ["list_item.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["platform_id"], ["list_item.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["product_id"], ["list_item.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["deal_stage_id"], ["deal_stage.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deal_status", "deal", ["status"], unique=False)
    op.create_index("ix_deal_close_period", "deal", ["close_year", "close_month"], unique=False)

    op.create_table(
        "lead",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("firstname", sa.String(length=255), nullable=True),
        sa.Column("lastname", sa.String(length=255), nullable=True),
        sa.Column("email", sa.String(length=320), nullable=True),
        sa.Column("mobile", sa.String(length=64), nullable=True),
        sa.Column("company", sa.String(length=255), nullable=True),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=255), nullable=True),
        sa.Column("received_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="new"),
        sa.Column("converted_deal_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("status IN ('new', 'converted', 'not_converted')", name="ck_lead_status"),
        sa.ForeignKeyConstraint(["converted_deal_id"], ["deal.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lead_status_received", "lead", ["status", "received_date"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_lead_status_received", table_name="lead")
    op.drop_table("lead")

    op.drop_index("ix_deal_close_period", table_name="deal")
    op.drop_index("ix_deal_status", table_name="deal")
    op.drop_table("deal")

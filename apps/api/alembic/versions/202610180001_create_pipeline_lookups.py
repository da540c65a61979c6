"""create pipeline lookup tables

Revision ID: 202610180001
Revises:
Create Date: 2026-10-18 00:01:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610180001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "deal_stage",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("probability", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint("probability >= 0 AND probability <= 100", name="ck_deal_stage_probability"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_deal_stage_sort_order", "deal_stage", ["sort_order"], unique=False)

    op.create_table(
        "list_item",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("list_type", sa.String(length=32), nullable=False),
        sa.Column("value", sa.String(length=255), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint(
            "list_type IN ('partner', 'platform', 'product', 'source')",
            name="ck_list_item_list_type",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_list_item_type_sort", "list_item", ["list_type", "sort_order"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_list_item_type_sort", table_name="list_item")
    op.drop_table("list_item")

    op.drop_index("ix_deal_stage_sort_order", table_name="deal_stage")
    op.drop_table("deal_stage")

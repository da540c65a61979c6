from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base
from app.pipeline.forecast import weighted_value


DEAL_STATUSES = ("active", "keep_warm", "won", "lost")
TERMINAL_DEAL_STATUSES = ("won", "lost")
LIST_TYPES = ("partner", "platform", "product", "source")
BREAKDOWN_TYPES = ("product", "partner")
CLOSE_TRIGGERS = ("manual", "auto")
LEAD_STATUSES = ("new", "converted", "not_converted")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _in_clause(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


class DealStage(Base):
    __tablename__ = "deal_stage"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    probability: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint("probability >= 0 AND probability <= 100", name="ck_deal_stage_probability"),
        Index("ix_deal_stage_sort_order", "sort_order"),
    )


class ListItem(Base):
    __tablename__ = "list_item"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    list_type: Mapped[str] = mapped_column(String(32), nullable=False)
    value: Mapped[str] = mapped_column(String(255), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(_in_clause("list_type", LIST_TYPES), name="ck_list_item_list_type"),
        Index("ix_list_item_type_sort", "list_type", "sort_order"),
    )


class Deal(Base):
    __tablename__ = "deal"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    deal_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("list_item.id", ondelete="SET NULL"), nullable=True
    )
    partner_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("list_item.id", ondelete="SET NULL"), nullable=True
    )
    platform_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("list_item.id", ondelete="SET NULL"), nullable=True
    )
    product_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("list_item.id", ondelete="SET NULL"), nullable=True
    )
    deal_stage_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("deal_stage.id", ondelete="SET NULL"), nullable=True
    )
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active", server_default="active")
    open_date: Mapped[date] = mapped_column(Date(), nullable=False, default=date.today)
    close_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    close_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deal_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_step_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    is_priority: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    row_color: Mapped[str | None] = mapped_column(String(32), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    deal_stage: Mapped[DealStage | None] = relationship("DealStage", foreign_keys=[deal_stage_id])
    source: Mapped[ListItem | None] = relationship("ListItem", foreign_keys=[source_id])
    partner: Mapped[ListItem | None] = relationship("ListItem", foreign_keys=[partner_id])
    platform: Mapped[ListItem | None] = relationship("ListItem", foreign_keys=[platform_id])
    product: Mapped[ListItem | None] = relationship("ListItem", foreign_keys=[product_id])

    __table_args__ = (
        CheckConstraint(_in_clause("status", DEAL_STATUSES), name="ck_deal_status"),
        CheckConstraint("close_month IS NULL OR (close_month >= 1 AND close_month <= 12)", name="ck_deal_close_month"),
        Index("ix_deal_status", "status"),
        Index("ix_deal_close_period", "close_year", "close_month"),
    )

    @property
    def deal_stage_name(self) -> str | None:
        return self.deal_stage.name if self.deal_stage is not None else None

    @property
    def deal_stage_probability(self) -> int | None:
        return self.deal_stage.probability if self.deal_stage is not None else None

    @property
    def source_name(self) -> str | None:
        return self.source.value if self.source is not None else None

    @property
    def partner_name(self) -> str | None:
        return self.partner.value if self.partner is not None else None

    @property
    def platform_name(self) -> str | None:
        return self.platform.value if self.platform is not None else None

    @property
    def product_name(self) -> str | None:
        return self.product.value if self.product is not None else None

    @property
    def weighted_forecast(self) -> Decimal:
        return weighted_value(self.deal_value, self.deal_stage_probability)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_DEAL_STATUSES


class MonthlySnapshot(Base):
    __tablename__ = "monthly_snapshot"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    snapshot_month: Mapped[int] = mapped_column(Integer, nullable=False)
    snapshot_year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_weighted_forecast: Mapped[Decimal] = mapped_column(
        Numeric(18, 6), nullable=False, default=Decimal("0"), server_default="0"
    )
    total_deal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    breakdowns: Mapped[list[SnapshotBreakdown]] = relationship(
        "SnapshotBreakdown",
        back_populates="snapshot",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        UniqueConstraint("snapshot_month", "snapshot_year", name="uq_monthly_snapshot_period"),
        CheckConstraint("snapshot_month >= 1 AND snapshot_month <= 12", name="ck_monthly_snapshot_month"),
    )


class SnapshotBreakdown(Base):
    __tablename__ = "monthly_snapshot_breakdown"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    snapshot_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("monthly_snapshot.id", ondelete="CASCADE"),
        nullable=False,
    )
    breakdown_type: Mapped[str] = mapped_column(String(32), nullable=False)
    breakdown_name: Mapped[str] = mapped_column(String(255), nullable=False)
    deal_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    forecast_value: Mapped[Decimal] = mapped_column(
        Numeric(18, 6), nullable=False, default=Decimal("0"), server_default="0"
    )

    snapshot: Mapped[MonthlySnapshot] = relationship("MonthlySnapshot", back_populates="breakdowns")

    __table_args__ = (
        CheckConstraint(_in_clause("breakdown_type", BREAKDOWN_TYPES), name="ck_snapshot_breakdown_type"),
        Index("ix_snapshot_breakdown_snapshot", "snapshot_id"),
    )


class ArchivedDeal(Base):
    __tablename__ = "archived_deal"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    original_deal_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    deal_name: Mapped[str] = mapped_column(String(255), nullable=False)
    contact_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    source_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    partner_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    platform_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    deal_stage_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False)
    open_date: Mapped[date | None] = mapped_column(Date(), nullable=True)
    close_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    close_year: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deal_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    archived_for_month: Mapped[int] = mapped_column(Integer, nullable=False)
    archived_for_year: Mapped[int] = mapped_column(Integer, nullable=False)
    archived_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(_in_clause("status", TERMINAL_DEAL_STATUSES), name="ck_archived_deal_status"),
        CheckConstraint(
            "archived_for_month >= 1 AND archived_for_month <= 12",
            name="ck_archived_deal_archived_for_month",
        ),
        Index("ix_archived_deal_status_period", "status", "archived_for_year", "archived_for_month"),
    )


class CloseMonthLog(Base):
    __tablename__ = "close_month_log"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    closed_month: Mapped[int] = mapped_column(Integer, nullable=False)
    closed_year: Mapped[int] = mapped_column(Integer, nullable=False)
    closed_by: Mapped[str] = mapped_column(String(16), nullable=False, default="manual", server_default="manual")
    closed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("closed_month", "closed_year", name="uq_close_month_log_period"),
        CheckConstraint(_in_clause("closed_by", CLOSE_TRIGGERS), name="ck_close_month_log_closed_by"),
    )


class Lead(Base):
    __tablename__ = "lead"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    firstname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    lastname: Mapped[str | None] = mapped_column(String(255), nullable=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    mobile: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company: Mapped[str | None] = mapped_column(String(255), nullable=True)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str | None] = mapped_column(String(255), nullable=True)
    received_date: Mapped[date] = mapped_column(Date(), nullable=False, default=date.today)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="new", server_default="new")
    converted_deal_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("deal.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        CheckConstraint(_in_clause("status", LEAD_STATUSES), name="ck_lead_status"),
        Index("ix_lead_status_received", "status", "received_date"),
    )

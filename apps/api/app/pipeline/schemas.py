from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


DealStatus = Literal["active", "keep_warm", "won", "lost"]
TerminalDealStatus = Literal["won", "lost"]
CloseTrigger = Literal["manual", "auto"]
LeadStatus = Literal["new", "converted", "not_converted"]
SortOrder = Literal["asc", "desc"]


class DealCreate(BaseModel):
    deal_name: str = Field(default="New Deal", min_length=1, max_length=255)
    contact_name: str | None = None
    source_id: UUID | None = None
    partner_id: UUID | None = None
    platform_id: UUID | None = None
    product_id: UUID | None = None
    deal_stage_id: UUID | None = None
    status: DealStatus = "active"
    open_date: date | None = None
    close_month: int | None = Field(default=None, ge=1, le=12)
    close_year: int | None = Field(default=None, ge=1900, le=9999)
    deal_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    notes: str | None = None
    next_step_date: date | None = None
    is_priority: bool = False
    row_color: str | None = Field(default=None, max_length=32)


class DealUpdate(BaseModel):
    deal_name: str | None = Field(default=None, min_length=1, max_length=255)
    contact_name: str | None = None
    source_id: UUID | None = None
    partner_id: UUID | None = None
    platform_id: UUID | None = None
    product_id: UUID | None = None
    deal_stage_id: UUID | None = None
    status: DealStatus | None = None
    open_date: date | None = None
    close_month: int | None = Field(default=None, ge=1, le=12)
    close_year: int | None = Field(default=None, ge=1900, le=9999)
    deal_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    notes: str | None = None
    next_step_date: date | None = None
    is_priority: bool | None = None
    row_color: str | None = Field(default=None, max_length=32)


class DealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    deal_name: str
    contact_name: str | None
    source_id: UUID | None
    partner_id: UUID | None
    platform_id: UUID | None
    product_id: UUID | None
    deal_stage_id: UUID | None
    status: str
    open_date: date
    close_month: int | None
    close_year: int | None
    deal_value: float | None
    notes: str | None
    next_step_date: date | None
    is_priority: bool
    row_color: str | None
    created_at: datetime
    updated_at: datetime
    deal_stage_name: str | None = None
    deal_stage_probability: int | None = None
    source_name: str | None = None
    partner_name: str | None = None
    platform_name: str | None = None
    product_name: str | None = None
    weighted_forecast: float = 0.0


class DealNameCheckRead(BaseModel):
    exists: bool


class ArchivedDealCreate(BaseModel):
    original_deal_id: UUID | None = None
    deal_name: str = Field(min_length=1, max_length=255)
    contact_name: str | None = None
    source_name: str | None = None
    partner_name: str | None = None
    platform_name: str | None = None
    product_name: str | None = None
    deal_stage_name: str | None = None
    status: TerminalDealStatus
    open_date: date | None = None
    close_month: int | None = Field(default=None, ge=1, le=12)
    close_year: int | None = Field(default=None, ge=1900, le=9999)
    deal_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    notes: str | None = None
    archived_for_month: int = Field(ge=1, le=12)
    archived_for_year: int = Field(ge=1900, le=9999)
    archived_at: datetime | None = None


class ArchivedDealUpdate(BaseModel):
    deal_name: str | None = Field(default=None, min_length=1, max_length=255)
    contact_name: str | None = None
    source_name: str | None = None
    partner_name: str | None = None
    platform_name: str | None = None
    product_name: str | None = None
    deal_stage_name: str | None = None
    status: TerminalDealStatus | None = None
    open_date: date | None = None
    close_month: int | None = Field(default=None, ge=1, le=12)
    close_year: int | None = Field(default=None, ge=1900, le=9999)
    deal_value: Decimal | None = Field(default=None, ge=Decimal("0"))
    notes: str | None = None
    archived_for_month: int | None = Field(default=None, ge=1, le=12)
    archived_for_year: int | None = Field(default=None, ge=1900, le=9999)


class ArchivedDealRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    original_deal_id: UUID | None
    deal_name: str
    contact_name: str | None
    source_name: str | None
    partner_name: str | None
    platform_name: str | None
    product_name: str | None
    deal_stage_name: str | None
    status: str
    open_date: date | None
    close_month: int | None
    close_year: int | None
    deal_value: float | None
    notes: str | None
    archived_for_month: int
    archived_for_year: int
    archived_at: datetime


class SnapshotBreakdownRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    breakdown_type: str
    breakdown_name: str
    deal_count: int
    forecast_value: float


class MonthlySnapshotRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    snapshot_month: int
    snapshot_year: int
    total_weighted_forecast: float
    total_deal_count: int
    created_at: datetime
    updated_at: datetime | None
    breakdowns: list[SnapshotBreakdownRead]


class CloseMonthLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    closed_month: int
    closed_year: int
    closed_by: str
    closed_at: datetime


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CloseMonthRequest(CamelModel):
    closed_by: str | None = None


class CloseMonthResult(CamelModel):
    success: bool = True
    closed_month: int
    closed_year: int
    snapshot_id: UUID
    total_weighted_forecast: float
    deal_count: int
    archived_count: int
    already_closed: bool = False


class PriorMonthUpdateResult(CamelModel):
    success: bool = True
    updated_month: int
    updated_year: int
    snapshot_id: UUID
    total_weighted_forecast: float
    deal_count: int


class CloseMonthStatusRead(CamelModel):
    current_month: int
    current_year: int
    prior_month: int
    prior_year: int
    prior_month_closed: bool
    days_remaining: int
    should_flash: bool


class LeadCreate(BaseModel):
    firstname: str | None = Field(default=None, max_length=255)
    lastname: str | None = Field(default=None, max_length=255)
    email: str | None = Field(default=None, max_length=320)
    mobile: str | None = Field(default=None, max_length=64)
    company: str | None = Field(default=None, max_length=255)
    message: str | None = None
    source: str | None = Field(default=None, max_length=255)
    received_date: date | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    firstname: str | None
    lastname: str | None
    email: str | None
    mobile: str | None
    company: str | None
    message: str | None
    source: str | None
    received_date: date
    status: str
    converted_deal_id: UUID | None
    created_at: datetime


class LeadStatusUpdate(BaseModel):
    status: LeadStatus


class LeadConvertRequest(BaseModel):
    deal_name: str | None = Field(default=None, min_length=1, max_length=255)


class SuccessRead(BaseModel):
    success: bool = True

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.core.auth import AuthUser, get_current_user as get_auth_user
from app.core.config import get_settings
from app.core.database import get_db
from app.pipeline.clock import Clock, SystemClock
from app.pipeline.month_close import month_close_service, resolve_trigger
from app.pipeline.repositories import DEFAULT_SORT
from app.pipeline.schemas import (
    ArchivedDealCreate,
    ArchivedDealRead,
    ArchivedDealUpdate,
    CloseMonthLogRead,
    CloseMonthRequest,
    CloseMonthResult,
    CloseMonthStatusRead,
    DealCreate,
    DealNameCheckRead,
    DealRead,
    DealUpdate,
    LeadConvertRequest,
    LeadCreate,
    LeadRead,
    LeadStatusUpdate,
    MonthlySnapshotRead,
    PriorMonthUpdateResult,
    SortOrder,
    SuccessRead,
)
from app.pipeline.service import ActorUser, archived_deal_service, deal_service, lead_service

close_month_router = APIRouter(prefix="/api", tags=["pipeline.close_month"])
deals_router = APIRouter(prefix="/api/deals", tags=["pipeline.deals"])
archived_router = APIRouter(prefix="/api/archived", tags=["pipeline.archived"])
leads_router = APIRouter(prefix="/api/leads", tags=["pipeline.leads"])


@dataclass
class ErrorEnvelope:
    error: str
    code: str
    details: Any
    correlation_id: str | None


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    payload = ErrorEnvelope(
        error=message,
        code=code,
        details=details,
        correlation_id=correlation_id,
    )
    headers = {"WWW-Authenticate": "Bearer"} if status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=status_code, content=payload.__dict__, headers=headers)


def _failure(request: Request, exc: HTTPException, code: str) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=code,
        message=str(exc.detail),
        details=exc.detail,
    )


def get_current_user(request: Request, auth_user: AuthUser = Depends(get_auth_user)) -> ActorUser:
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return ActorUser(
        user_id=auth_user.sub,
        roles=list(auth_user.roles),
        correlation_id=correlation_id,
        authenticated=auth_user.is_authenticated,
    )


def get_clock() -> Clock:
    return SystemClock(get_settings().scheduler_timezone)


def require_authenticated(user: ActorUser) -> None:
    if not user.authenticated:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")


@close_month_router.get("/close-month/status", response_model=CloseMonthStatusRead)
def get_close_month_status(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> CloseMonthStatusRead | JSONResponse:
    try:
        require_authenticated(user)
        return month_close_service.status(db, clock)
    except HTTPException as exc:
        return _failure(request, exc, "close_month_status_failed")


@close_month_router.post("/close-month", response_model=CloseMonthResult)
def close_month(
    request: Request,
    dto: CloseMonthRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> CloseMonthResult | JSONResponse:
    try:
        require_authenticated(user)
        closed_by = resolve_trigger(dto.closed_by if dto is not None else None)
        return month_close_service.close_month(db, user, closed_by, clock)
    except HTTPException as exc:
        return _failure(request, exc, "close_month_failed")


@close_month_router.post("/update-prior-month", response_model=PriorMonthUpdateResult)
def update_prior_month(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> PriorMonthUpdateResult | JSONResponse:
    try:
        require_authenticated(user)
        return month_close_service.update_prior_month_snapshot(db, user, clock)
    except HTTPException as exc:
        return _failure(request, exc, "snapshot_update_failed")


@close_month_router.get("/snapshots", response_model=list[MonthlySnapshotRead])
def list_snapshots(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[MonthlySnapshotRead] | JSONResponse:
    try:
        require_authenticated(user)
        return month_close_service.list_snapshots(db)
    except HTTPException as exc:
        return _failure(request, exc, "snapshot_list_failed")


@close_month_router.get("/close-month/log", response_model=list[CloseMonthLogRead])
def list_close_month_log(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[CloseMonthLogRead] | JSONResponse:
    try:
        require_authenticated(user)
        return month_close_service.list_close_log(db)
    except HTTPException as exc:
        return _failure(request, exc, "close_month_log_failed")


@deals_router.get("", response_model=list[DealRead])
def list_deals(
    request: Request,
    sort: str = Query(default=DEFAULT_SORT),
    order: SortOrder = Query(default="asc"),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[DealRead] | JSONResponse:
    try:
        require_authenticated(user)
        return deal_service.list_deals(db, sort=sort, order=order)
    except HTTPException as exc:
        return _failure(request, exc, "deal_list_failed")


@deals_router.get("/check-name", response_model=DealNameCheckRead)
def check_deal_name(
    request: Request,
    name: str = Query(default=""),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealNameCheckRead | JSONResponse:
    try:
        require_authenticated(user)
        return deal_service.check_name(db, name)
    except HTTPException as exc:
        return _failure(request, exc, "deal_check_name_failed")


@deals_router.post("", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal(
    request: Request,
    dto: DealCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> DealRead | JSONResponse:
    try:
        require_authenticated(user)
        return deal_service.create_deal(db, user, dto, clock)
    except HTTPException as exc:
        return _failure(request, exc, "deal_create_failed")


@deals_router.get("/{deal_id}", response_model=DealRead)
def get_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_authenticated(user)
        return deal_service.get_deal(db, deal_id)
    except HTTPException as exc:
        return _failure(request, exc, "deal_get_failed")


@deals_router.put("/{deal_id}", response_model=DealRead)
def update_deal(
    request: Request,
    deal_id: uuid.UUID,
    dto: DealUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DealRead | JSONResponse:
    try:
        require_authenticated(user)
        return deal_service.update_deal(db, user, deal_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "deal_update_failed")


@deals_router.delete("/{deal_id}", response_model=SuccessRead)
def delete_deal(
    request: Request,
    deal_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SuccessRead | JSONResponse:
    try:
        require_authenticated(user)
        deal_service.delete_deal(db, user, deal_id)
        return SuccessRead()
    except HTTPException as exc:
        return _failure(request, exc, "deal_delete_failed")


@archived_router.get("/{deal_status}", response_model=list[ArchivedDealRead])
def list_archived_deals(
    request: Request,
    deal_status: Literal["won", "lost"],
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ArchivedDealRead] | JSONResponse:
    try:
        require_authenticated(user)
        return archived_deal_service.list_archived(db, deal_status)
    except HTTPException as exc:
        return _failure(request, exc, "archived_list_failed")


@archived_router.post("", response_model=ArchivedDealRead, status_code=status.HTTP_201_CREATED)
def create_archived_deal(
    request: Request,
    dto: ArchivedDealCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ArchivedDealRead | JSONResponse:
    try:
        require_authenticated(user)
        return archived_deal_service.create_archived(db, user, dto)
    except HTTPException as exc:
        return _failure(request, exc, "archived_create_failed")


@archived_router.put("/{archived_id}", response_model=ArchivedDealRead)
def update_archived_deal(
    request: Request,
    archived_id: uuid.UUID,
    dto: ArchivedDealUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ArchivedDealRead | JSONResponse:
    try:
        require_authenticated(user)
        return archived_deal_service.update_archived(db, user, archived_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "archived_update_failed")


@archived_router.delete("/{archived_id}", response_model=SuccessRead)
def delete_archived_deal(
    request: Request,
    archived_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SuccessRead | JSONResponse:
    try:
        require_authenticated(user)
        archived_deal_service.delete_archived(db, user, archived_id)
        return SuccessRead()
    except HTTPException as exc:
        return _failure(request, exc, "archived_delete_failed")


@archived_router.post("/{archived_id}/restore", response_model=DealRead)
def restore_archived_deal(
    request: Request,
    archived_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> DealRead | JSONResponse:
    try:
        require_authenticated(user)
        return archived_deal_service.restore(db, user, archived_id, clock)
    except HTTPException as exc:
        return _failure(request, exc, "archived_restore_failed")


@leads_router.get("", response_model=list[LeadRead])
def list_leads(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.list_leads(db)
    except HTTPException as exc:
        return _failure(request, exc, "lead_list_failed")


@leads_router.post("", response_model=LeadRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.create_lead(db, user, dto, clock)
    except HTTPException as exc:
        return _failure(request, exc, "lead_create_failed")


@leads_router.put("/{lead_id}/status", response_model=LeadRead)
def update_lead_status(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadStatusUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.update_status(db, user, lead_id, dto)
    except HTTPException as exc:
        return _failure(request, exc, "lead_status_update_failed")


@leads_router.post("/{lead_id}/convert", response_model=LeadRead)
def convert_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadConvertRequest | None = Body(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
    clock: Clock = Depends(get_clock),
) -> LeadRead | JSONResponse:
    try:
        require_authenticated(user)
        return lead_service.convert(db, user, lead_id, dto or LeadConvertRequest(), clock)
    except HTTPException as exc:
        return _failure(request, exc, "lead_convert_failed")


@leads_router.delete("/{lead_id}", response_model=SuccessRead)
def delete_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SuccessRead | JSONResponse:
    try:
        require_authenticated(user)
        lead_service.delete_lead(db, user, lead_id)
        return SuccessRead()
    except HTTPException as exc:
        return _failure(request, exc, "lead_delete_failed")

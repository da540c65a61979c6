from __future__ import annotations

import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime

from fastapi import HTTPException, status
from opentelemetry import trace
from opentelemetry.trace import Status, StatusCode
from sqlalchemy import select, text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app import audit, events
from app.core.config import get_settings
from app.metrics import observe_month_close, observe_snapshot_write
from app.otel import get_tracer
from app.pipeline.clock import Clock, MonthRef, days_remaining_in_month, prior_month
from app.pipeline.forecast import ForecastAggregate, ForecastLine, aggregate_forecast
from app.pipeline.models import CLOSE_TRIGGERS, ArchivedDeal, CloseMonthLog, MonthlySnapshot, SnapshotBreakdown
from app.pipeline.repositories import DealQueryRepository
from app.pipeline.schemas import (
    CloseMonthLogRead,
    CloseMonthResult,
    CloseMonthStatusRead,
    CloseTrigger,
    MonthlySnapshotRead,
    PriorMonthUpdateResult,
    SnapshotBreakdownRead,
)
from app.pipeline.service import ActorUser


logger = logging.getLogger("app.pipeline.month_close")
tracer = get_tracer("app.pipeline.month_close")

SCHEDULER_ACTOR = ActorUser(user_id="system:scheduler", roles=["system"])


class SnapshotStore:
    def find(self, session: Session, period: MonthRef) -> MonthlySnapshot | None:
        return session.scalar(
            select(MonthlySnapshot)
            .where(MonthlySnapshot.snapshot_month == period.month, MonthlySnapshot.snapshot_year == period.year)
            .options(selectinload(MonthlySnapshot.breakdowns))
        )

    def upsert(self, session: Session, period: MonthRef, aggregate: ForecastAggregate, now: datetime) -> MonthlySnapshot:
        snapshot = self.find(session, period)
        if snapshot is None:
            snapshot = MonthlySnapshot(snapshot_month=period.month, snapshot_year=period.year, created_at=now)
            session.add(snapshot)
            self._apply(snapshot, aggregate)
            observe_snapshot_write("insert")
        else:
            self.replace(session, snapshot, aggregate, now)
        session.flush()
        return snapshot

    def replace(self, session: Session, snapshot: MonthlySnapshot, aggregate: ForecastAggregate, now: datetime) -> None:
        # Breakdown rows are rebuilt from scratch; delete-orphan drops the old ones.
        snapshot.breakdowns.clear()
        session.flush()
        snapshot.updated_at = now
        self._apply(snapshot, aggregate)
        observe_snapshot_write("replace")

    def list_snapshots(self, session: Session) -> Sequence[MonthlySnapshot]:
        return session.scalars(
            select(MonthlySnapshot)
            .options(selectinload(MonthlySnapshot.breakdowns))
            .order_by(MonthlySnapshot.snapshot_year.desc(), MonthlySnapshot.snapshot_month.desc())
        ).all()

    def _apply(self, snapshot: MonthlySnapshot, aggregate: ForecastAggregate) -> None:
        snapshot.total_weighted_forecast = aggregate.total_weighted_forecast
        snapshot.total_deal_count = aggregate.total_deal_count
        for breakdown_type, bucket in aggregate.breakdowns():
            snapshot.breakdowns.append(
                SnapshotBreakdown(
                    breakdown_type=breakdown_type,
                    breakdown_name=bucket.name,
                    deal_count=bucket.count,
                    forecast_value=bucket.value,
                )
            )


class Archiver:
    def __init__(self, deal_repository: DealQueryRepository | None = None) -> None:
        self.deal_repository = deal_repository or DealQueryRepository()

    def archive_terminal(self, session: Session, period: MonthRef, now: datetime) -> int:
        archived_count = 0
        for deal in self.deal_repository.terminal_deals(session):
            session.add(
                ArchivedDeal(
                    original_deal_id=deal.id,
                    deal_name=deal.deal_name,
                    contact_name=deal.contact_name,
                    source_name=deal.source_name,
                    partner_name=deal.partner_name,
                    platform_name=deal.platform_name,
                    product_name=deal.product_name,
                    deal_stage_name=deal.deal_stage_name,
                    status=deal.status,
                    open_date=deal.open_date,
                    close_month=deal.close_month,
                    close_year=deal.close_year,
                    deal_value=deal.deal_value,
                    notes=deal.notes,
                    archived_for_month=period.month,
                    archived_for_year=period.year,
                    archived_at=now,
                )
            )
            session.delete(deal)
            archived_count += 1
        session.flush()
        return archived_count


class CloseLedger:
    def find(self, session: Session, period: MonthRef) -> CloseMonthLog | None:
        return session.scalar(
            select(CloseMonthLog).where(
                CloseMonthLog.closed_month == period.month,
                CloseMonthLog.closed_year == period.year,
            )
        )

    def is_closed(self, session: Session, period: MonthRef) -> bool:
        return self.find(session, period) is not None

    def record(self, session: Session, period: MonthRef, closed_by: str, now: datetime) -> bool:
        if self.find(session, period) is not None:
            return False
        try:
            with session.begin_nested():
                session.add(
                    CloseMonthLog(closed_month=period.month, closed_year=period.year, closed_by=closed_by, closed_at=now)
                )
        except IntegrityError:
            # A concurrent close recorded the month first; its row stands.
            return False
        return True

    def entries(self, session: Session) -> Sequence[CloseMonthLog]:
        return session.scalars(
            select(CloseMonthLog).order_by(CloseMonthLog.closed_year.desc(), CloseMonthLog.closed_month.desc())
        ).all()


def _lock_period(session: Session, period: MonthRef) -> None:
    bind = session.get_bind()
    if bind.dialect.name != "postgresql":
        return
    session.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": period.year * 100 + period.month})


def resolve_trigger(value: str | None) -> CloseTrigger:
    trigger = value or "manual"
    if trigger not in CLOSE_TRIGGERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown closedBy: {trigger}. Expected one of: {', '.join(CLOSE_TRIGGERS)}",
        )
    return trigger  # type: ignore[return-value]


def to_snapshot_read(snapshot: MonthlySnapshot) -> MonthlySnapshotRead:
    breakdowns = sorted(snapshot.breakdowns, key=lambda row: (row.breakdown_type, -row.forecast_value, row.breakdown_name))
    return MonthlySnapshotRead(
        id=snapshot.id,
        snapshot_month=snapshot.snapshot_month,
        snapshot_year=snapshot.snapshot_year,
        total_weighted_forecast=float(snapshot.total_weighted_forecast),
        total_deal_count=snapshot.total_deal_count,
        created_at=snapshot.created_at,
        updated_at=snapshot.updated_at,
        breakdowns=[SnapshotBreakdownRead.model_validate(row) for row in breakdowns],
    )


@dataclass(slots=True)
class MonthCloseService:
    deal_repository: DealQueryRepository = field(default_factory=DealQueryRepository)
    snapshot_store: SnapshotStore = field(default_factory=SnapshotStore)
    archiver: Archiver = field(default_factory=Archiver)
    ledger: CloseLedger = field(default_factory=CloseLedger)
    flash_days: int | None = None

    entity_type = "pipeline.month_close"

    def aggregate_active(self, session: Session) -> ForecastAggregate:
        deals = self.deal_repository.active_deals(session)
        return aggregate_forecast(ForecastLine.from_deal(deal) for deal in deals)

    def status(self, session: Session, clock: Clock) -> CloseMonthStatusRead:
        today = clock.today()
        current = MonthRef.of(today)
        prior = current.previous()
        prior_closed = self.ledger.is_closed(session, prior)
        days_remaining = days_remaining_in_month(today)
        threshold = self.flash_days if self.flash_days is not None else get_settings().close_month_flash_days
        return CloseMonthStatusRead(
            current_month=current.month,
            current_year=current.year,
            prior_month=prior.month,
            prior_year=prior.year,
            prior_month_closed=prior_closed,
            days_remaining=days_remaining,
            should_flash=days_remaining < threshold and not prior_closed,
        )

    def close_month(
        self,
        session: Session,
        actor_user: ActorUser,
        closed_by: CloseTrigger,
        clock: Clock,
    ) -> CloseMonthResult:
        period = prior_month(clock)
        now = clock.now()
        started = time.perf_counter()

        with tracer.start_as_current_span("pipeline.month_close") as close_span:
            close_span.set_attribute("month_close.month", period.month)
            close_span.set_attribute("month_close.year", period.year)
            close_span.set_attribute("month_close.trigger", closed_by)
            if actor_user.correlation_id:
                close_span.set_attribute("correlation_id", actor_user.correlation_id)

            logger.info(
                "month_close.started",
                extra={"month": period.month, "year": period.year, "closed_by": closed_by},
            )
            try:
                _lock_period(session, period)
                with tracer.start_as_current_span("pipeline.month_close.aggregate") as span:
                    aggregate = self.aggregate_active(session)
                    span.set_attribute("deal_count", aggregate.total_deal_count)
                with tracer.start_as_current_span("pipeline.month_close.snapshot") as span:
                    snapshot = self.snapshot_store.upsert(session, period, aggregate, now)
                    snapshot_id = snapshot.id
                    span.set_attribute("snapshot_id", str(snapshot_id))
                with tracer.start_as_current_span("pipeline.month_close.archive") as span:
                    archived_count = self.archiver.archive_terminal(session, period, now)
                    span.set_attribute("archived_count", archived_count)
                with tracer.start_as_current_span("pipeline.month_close.ledger") as span:
                    ledger_inserted = self.ledger.record(session, period, closed_by, now)
                    span.set_attribute("ledger_inserted", ledger_inserted)
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                self._fail(close_span, exc, period, closed_by, started, outcome="conflict")
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Month {period} is already being closed",
                )
            except SQLAlchemyError as exc:
                session.rollback()
                self._fail(close_span, exc, period, closed_by, started, outcome="error")
                raise

        duration = time.perf_counter() - started
        outcome = "success" if ledger_inserted else "rerun"
        observe_month_close(trigger=closed_by, outcome=outcome, duration=duration, archived_count=archived_count)
        total = aggregate.total_weighted_forecast
        logger.info(
            "month_close.completed",
            extra={
                "month": period.month,
                "year": period.year,
                "closed_by": closed_by,
                "snapshot_id": str(snapshot_id),
                "deal_count": aggregate.total_deal_count,
                "archived_count": archived_count,
                "total_weighted_forecast": str(total),
                "already_closed": not ledger_inserted,
                "duration_ms": round(duration * 1000, 2),
            },
        )
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(snapshot_id),
            action="close" if ledger_inserted else "reclose",
            before=None,
            after={
                "month": period.month,
                "year": period.year,
                "closed_by": closed_by,
                "deal_count": aggregate.total_deal_count,
                "archived_count": archived_count,
                "total_weighted_forecast": str(total),
            },
            correlation_id=actor_user.correlation_id,
        )
        envelope = events.build_envelope(
            "pipeline.month_closed",
            actor_user.user_id,
            {
                "month": period.month,
                "year": period.year,
                "closed_by": closed_by,
                "snapshot_id": str(snapshot_id),
                "archived_count": archived_count,
                "already_closed": not ledger_inserted,
            },
        )
        envelope["correlation_id"] = actor_user.correlation_id
        events.publish(envelope)

        return CloseMonthResult(
            closed_month=period.month,
            closed_year=period.year,
            snapshot_id=snapshot_id,
            total_weighted_forecast=float(total),
            deal_count=aggregate.total_deal_count,
            archived_count=archived_count,
            already_closed=not ledger_inserted,
        )

    def update_prior_month_snapshot(self, session: Session, actor_user: ActorUser, clock: Clock) -> PriorMonthUpdateResult:
        period = prior_month(clock)
        with tracer.start_as_current_span("pipeline.snapshot.recompute") as span:
            span.set_attribute("month_close.month", period.month)
            span.set_attribute("month_close.year", period.year)

            snapshot = self.snapshot_store.find(session, period)
            if snapshot is None:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"No snapshot exists for {period}. Use Close Month first.",
                )

            try:
                _lock_period(session, period)
                aggregate = self.aggregate_active(session)
                self.snapshot_store.replace(session, snapshot, aggregate, clock.now())
                snapshot_id = snapshot.id
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                span.record_exception(exc)
                span.set_status(Status(StatusCode.ERROR, str(exc)))
                logger.exception(
                    "snapshot.recompute_failed",
                    extra={"month": period.month, "year": period.year, "error": str(exc)},
                )
                raise

        logger.info(
            "snapshot.recomputed",
            extra={
                "month": period.month,
                "year": period.year,
                "snapshot_id": str(snapshot_id),
                "deal_count": aggregate.total_deal_count,
                "total_weighted_forecast": str(aggregate.total_weighted_forecast),
            },
        )
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type="pipeline.snapshot",
            entity_id=str(snapshot_id),
            action="recompute",
            before=None,
            after={
                "month": period.month,
                "year": period.year,
                "deal_count": aggregate.total_deal_count,
                "total_weighted_forecast": str(aggregate.total_weighted_forecast),
            },
            correlation_id=actor_user.correlation_id,
        )
        return PriorMonthUpdateResult(
            updated_month=period.month,
            updated_year=period.year,
            snapshot_id=snapshot_id,
            total_weighted_forecast=float(aggregate.total_weighted_forecast),
            deal_count=aggregate.total_deal_count,
        )

    def run_scheduled_close(self, session: Session, clock: Clock) -> CloseMonthResult | None:
        today = clock.today()
        if today.day != 1:
            return None

        period = prior_month(clock)
        if self.ledger.is_closed(session, period):
            logger.info(
                "month_close.skipped",
                extra={"month": period.month, "year": period.year, "closed_by": "auto", "already_closed": True},
            )
            observe_month_close(trigger="auto", outcome="skipped", duration=0.0)
            return None
        return self.close_month(session, SCHEDULER_ACTOR, "auto", clock)

    def list_snapshots(self, session: Session) -> list[MonthlySnapshotRead]:
        return [to_snapshot_read(row) for row in self.snapshot_store.list_snapshots(session)]

    def list_close_log(self, session: Session) -> list[CloseMonthLogRead]:
        return [CloseMonthLogRead.model_validate(row) for row in self.ledger.entries(session)]

    def _fail(
        self,
        span: trace.Span,
        exc: Exception,
        period: MonthRef,
        closed_by: str,
        started: float,
        *,
        outcome: str,
    ) -> None:
        duration = time.perf_counter() - started
        span.record_exception(exc)
        span.set_status(Status(StatusCode.ERROR, str(exc)))
        observe_month_close(trigger=closed_by, outcome=outcome, duration=duration)
        logger.exception(
            "month_close.failed",
            extra={
                "month": period.month,
                "year": period.year,
                "closed_by": closed_by,
                "duration_ms": round(duration * 1000, 2),
                "error": str(exc),
            },
        )


month_close_service = MonthCloseService()

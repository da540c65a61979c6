from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from fastapi import HTTPException, status
from sqlalchemy import case, select
from sqlalchemy.orm import Session

from app import audit, events
from app.core.config import get_settings
from app.pipeline.clock import Clock
from app.pipeline.models import ArchivedDeal, Deal, DealStage, Lead, ListItem
from app.pipeline.repositories import DEFAULT_SORT, DealQueryRepository
from app.pipeline.schemas import (
    ArchivedDealCreate,
    ArchivedDealRead,
    ArchivedDealUpdate,
    DealCreate,
    DealNameCheckRead,
    DealRead,
    DealUpdate,
    LeadConvertRequest,
    LeadCreate,
    LeadRead,
    LeadStatusUpdate,
)


logger = logging.getLogger("app.pipeline")

_LOOKUP_FIELDS = {
    "source_id": "source",
    "partner_id": "partner",
    "platform_id": "platform",
    "product_id": "product",
}
_NON_NULLABLE_DEAL_FIELDS = {"deal_name", "status", "open_date", "is_priority"}


@dataclass(slots=True)
class ActorUser:
    user_id: str
    roles: list[str] = field(default_factory=list)
    correlation_id: str | None = None
    authenticated: bool = True


def _envelope(event_type: str, actor_user: ActorUser, payload: dict[str, Any]) -> dict[str, Any]:
    envelope = events.build_envelope(event_type, actor_user.user_id, payload)
    envelope["correlation_id"] = actor_user.correlation_id
    return envelope


def to_deal_read(deal: Deal) -> DealRead:
    return DealRead.model_validate(deal)


@dataclass(slots=True)
class DealService:
    deal_repository: DealQueryRepository = field(default_factory=DealQueryRepository)
    stage_probability_gate: int | None = None

    entity_type = "pipeline.deal"

    def list_deals(self, session: Session, *, sort: str = DEFAULT_SORT, order: str = "asc") -> list[DealRead]:
        rows = self.deal_repository.list_deals(session, sort=sort, order=order)
        return [to_deal_read(row) for row in rows]

    def check_name(self, session: Session, name: str) -> DealNameCheckRead:
        return DealNameCheckRead(exists=self.deal_repository.name_exists(session, name))

    def get_deal(self, session: Session, deal_id: uuid.UUID) -> DealRead:
        return to_deal_read(self._get_deal(session, deal_id))

    def create_deal(self, session: Session, actor_user: ActorUser, dto: DealCreate, clock: Clock) -> DealRead:
        payload = dto.model_dump()
        if payload["open_date"] is None:
            payload["open_date"] = clock.today()
        payload["deal_name"] = payload["deal_name"].strip() or "New Deal"

        self._validate_links(session, payload)
        stage = self._resolve_stage(session, payload["deal_stage_id"])
        self._validate_stage_rules(stage, payload["close_month"], payload["close_year"], payload["deal_value"])

        deal = Deal(**payload)
        session.add(deal)
        session.commit()

        created = self._get_deal(session, deal.id)
        deal_read = to_deal_read(created)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(created.id),
            action="create",
            before=None,
            after=deal_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        events.publish(
            _envelope(
                "pipeline.deal.created",
                actor_user,
                {"deal_id": str(created.id), "status": created.status, "deal_stage_id": _str_or_none(created.deal_stage_id)},
            )
        )
        return deal_read

    def update_deal(self, session: Session, actor_user: ActorUser, deal_id: uuid.UUID, dto: DealUpdate) -> DealRead:
        deal = self._get_deal(session, deal_id)
        payload = {
            key: value
            for key, value in dto.model_dump(exclude_unset=True).items()
            if value is not None or key not in _NON_NULLABLE_DEAL_FIELDS
        }
        if not payload:
            return to_deal_read(deal)
        if "deal_name" in payload:
            payload["deal_name"] = payload["deal_name"].strip() or deal.deal_name

        self._validate_links(session, payload)
        stage_id = payload.get("deal_stage_id", deal.deal_stage_id)
        stage = self._resolve_stage(session, stage_id)
        self._validate_stage_rules(
            stage,
            payload.get("close_month", deal.close_month),
            payload.get("close_year", deal.close_year),
            payload.get("deal_value", deal.deal_value),
        )

        before = to_deal_read(deal).model_dump(mode="json")
        previous_status = deal.status
        for key, value in payload.items():
            setattr(deal, key, value)
        session.commit()

        updated = self._get_deal(session, deal_id)
        deal_read = to_deal_read(updated)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(deal_id),
            action="update",
            before=before,
            after=deal_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        events.publish(
            _envelope(
                "pipeline.deal.updated",
                actor_user,
                {"deal_id": str(deal_id), "changed_fields": sorted(payload.keys())},
            )
        )
        if updated.status != previous_status and updated.is_terminal:
            events.publish(
                _envelope(
                    f"pipeline.deal.{updated.status}",
                    actor_user,
                    {"deal_id": str(deal_id), "deal_value": _str_or_none(updated.deal_value)},
                )
            )
        return deal_read

    def delete_deal(self, session: Session, actor_user: ActorUser, deal_id: uuid.UUID) -> None:
        deal = self._get_deal(session, deal_id)
        before = to_deal_read(deal).model_dump(mode="json")
        session.delete(deal)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(deal_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )
        events.publish(_envelope("pipeline.deal.deleted", actor_user, {"deal_id": str(deal_id)}))

    def _get_deal(self, session: Session, deal_id: uuid.UUID) -> Deal:
        deal = self.deal_repository.get(session, deal_id)
        if deal is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Deal not found")
        return deal

    def _resolve_stage(self, session: Session, stage_id: uuid.UUID | None) -> DealStage | None:
        if stage_id is None:
            return None
        stage = session.get(DealStage, stage_id)
        if stage is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Deal stage not found")
        return stage

    def _validate_links(self, session: Session, payload: dict[str, Any]) -> None:
        for key, list_type in _LOOKUP_FIELDS.items():
            item_id = payload.get(key)
            if item_id is None:
                continue
            item = session.get(ListItem, item_id)
            if item is None or item.list_type != list_type:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Unknown {list_type}: {item_id}")

    def _validate_stage_rules(
        self,
        stage: DealStage | None,
        close_month: int | None,
        close_year: int | None,
        deal_value: Decimal | None,
    ) -> None:
        gate = self.stage_probability_gate
        if gate is None:
            gate = get_settings().stage_probability_gate
        if stage is None or stage.probability < gate:
            return

        missing: list[str] = []
        if close_month is None or close_year is None:
            missing.append("close date")
        if deal_value is None:
            missing.append("deal value")
        if missing:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Stage '{stage.name}' ({stage.probability}%) requires {' and '.join(missing)}",
            )


@dataclass(slots=True)
class ArchivedDealService:
    deal_repository: DealQueryRepository = field(default_factory=DealQueryRepository)

    entity_type = "pipeline.archived_deal"

    def list_archived(self, session: Session, deal_status: str) -> list[ArchivedDealRead]:
        rows = session.scalars(
            select(ArchivedDeal)
            .where(ArchivedDeal.status == deal_status)
            .order_by(
                ArchivedDeal.archived_for_year.desc(),
                ArchivedDeal.archived_for_month.desc(),
                ArchivedDeal.archived_at.desc(),
            )
        ).all()
        return [ArchivedDealRead.model_validate(row) for row in rows]

    def create_archived(self, session: Session, actor_user: ActorUser, dto: ArchivedDealCreate) -> ArchivedDealRead:
        payload = dto.model_dump()
        if payload["archived_at"] is None:
            payload.pop("archived_at")
        archived = ArchivedDeal(**payload)
        session.add(archived)
        session.commit()
        session.refresh(archived)

        archived_read = ArchivedDealRead.model_validate(archived)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(archived.id),
            action="backfill",
            before=None,
            after=archived_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        return archived_read

    def update_archived(
        self,
        session: Session,
        actor_user: ActorUser,
        archived_id: uuid.UUID,
        dto: ArchivedDealUpdate,
    ) -> ArchivedDealRead:
        archived = self._get_archived(session, archived_id)
        # Omitted and null fields both keep the stored value.
        payload = dto.model_dump(exclude_none=True)
        if not payload:
            return ArchivedDealRead.model_validate(archived)

        before = ArchivedDealRead.model_validate(archived).model_dump(mode="json")
        for key, value in payload.items():
            setattr(archived, key, value)
        session.commit()
        session.refresh(archived)

        archived_read = ArchivedDealRead.model_validate(archived)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(archived_id),
            action="update",
            before=before,
            after=archived_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        return archived_read

    def delete_archived(self, session: Session, actor_user: ActorUser, archived_id: uuid.UUID) -> None:
        archived = self._get_archived(session, archived_id)
        before = ArchivedDealRead.model_validate(archived).model_dump(mode="json")
        session.delete(archived)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(archived_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )

    def restore(self, session: Session, actor_user: ActorUser, archived_id: uuid.UUID, clock: Clock) -> DealRead:
        archived = self._get_archived(session, archived_id)
        before = ArchivedDealRead.model_validate(archived).model_dump(mode="json")

        # Archived rows hold names only, so lookup links start out empty.
        deal = Deal(
            deal_name=archived.deal_name,
            contact_name=archived.contact_name,
            source_id=None,
            partner_id=None,
            platform_id=None,
            product_id=None,
            deal_stage_id=None,
            status="active",
            open_date=archived.open_date or clock.today(),
            close_month=archived.close_month,
            close_year=archived.close_year,
            deal_value=archived.deal_value,
            notes=archived.notes,
        )
        session.add(deal)
        session.delete(archived)
        session.commit()

        restored = self.deal_repository.get(session, deal.id)
        if restored is None:
            raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="restored deal reload failed")
        deal_read = to_deal_read(restored)

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(archived_id),
            action="restore",
            before=before,
            after={"deal_id": str(restored.id)},
            correlation_id=actor_user.correlation_id,
        )
        events.publish(
            _envelope(
                "pipeline.archived_deal.restored",
                actor_user,
                {"archived_deal_id": str(archived_id), "deal_id": str(restored.id)},
            )
        )
        logger.info(
            "archived_deal.restored",
            extra={"deal_id": str(restored.id)},
        )
        return deal_read

    def _get_archived(self, session: Session, archived_id: uuid.UUID) -> ArchivedDeal:
        archived = session.get(ArchivedDeal, archived_id)
        if archived is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Archived deal not found")
        return archived


@dataclass(slots=True)
class LeadService:
    entity_type = "pipeline.lead"

    def list_leads(self, session: Session) -> list[LeadRead]:
        rows = session.scalars(
            select(Lead).order_by(
                case((Lead.status == "new", 0), else_=1),
                Lead.received_date.desc(),
                Lead.created_at.desc(),
            )
        ).all()
        return [LeadRead.model_validate(row) for row in rows]

    def create_lead(self, session: Session, actor_user: ActorUser, dto: LeadCreate, clock: Clock) -> LeadRead:
        payload = dto.model_dump()
        if payload["received_date"] is None:
            payload["received_date"] = clock.today()
        lead = Lead(status="new", **payload)
        session.add(lead)
        session.commit()
        session.refresh(lead)

        lead_read = LeadRead.model_validate(lead)
        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead.id),
            action="create",
            before=None,
            after=lead_read.model_dump(mode="json"),
            correlation_id=actor_user.correlation_id,
        )
        events.publish(_envelope("pipeline.lead.created", actor_user, {"lead_id": str(lead.id), "source": lead.source}))
        return lead_read

    def update_status(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadStatusUpdate,
    ) -> LeadRead:
        lead = self._get_lead(session, lead_id)
        before = {"status": lead.status}
        lead.status = dto.status
        if dto.status != "converted":
            lead.converted_deal_id = None
        session.commit()
        session.refresh(lead)

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="status_change",
            before=before,
            after={"status": lead.status},
            correlation_id=actor_user.correlation_id,
        )
        return LeadRead.model_validate(lead)

    def convert(
        self,
        session: Session,
        actor_user: ActorUser,
        lead_id: uuid.UUID,
        dto: LeadConvertRequest,
        clock: Clock,
    ) -> LeadRead:
        lead = self._get_lead(session, lead_id)
        if lead.status == "converted":
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Lead already converted")
        previous_status = lead.status

        deal_name = (dto.deal_name or "").strip() or (lead.company or "").strip() or "New Deal"
        contact_name = " ".join(part for part in (lead.firstname, lead.lastname) if part) or None
        deal = Deal(
            deal_name=deal_name,
            contact_name=contact_name,
            status="active",
            open_date=clock.today(),
            notes=lead.message,
        )
        session.add(deal)
        session.flush()

        lead.status = "converted"
        lead.converted_deal_id = deal.id
        session.commit()
        session.refresh(lead)

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="convert",
            before={"status": previous_status},
            after={"status": "converted", "converted_deal_id": str(deal.id)},
            correlation_id=actor_user.correlation_id,
        )
        events.publish(
            _envelope("pipeline.lead.converted", actor_user, {"lead_id": str(lead_id), "deal_id": str(deal.id)})
        )
        logger.info("lead.converted", extra={"lead_id": str(lead_id), "deal_id": str(deal.id)})
        return LeadRead.model_validate(lead)

    def delete_lead(self, session: Session, actor_user: ActorUser, lead_id: uuid.UUID) -> None:
        lead = self._get_lead(session, lead_id)
        before = LeadRead.model_validate(lead).model_dump(mode="json")
        session.delete(lead)
        session.commit()

        audit.record(
            actor_user_id=actor_user.user_id,
            entity_type=self.entity_type,
            entity_id=str(lead_id),
            action="delete",
            before=before,
            after=None,
            correlation_id=actor_user.correlation_id,
        )

    def _get_lead(self, session: Session, lead_id: uuid.UUID) -> Lead:
        lead = session.get(Lead, lead_id)
        if lead is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lead not found")
        return lead


def _str_or_none(value: Any) -> str | None:
    return str(value) if value is not None else None


deal_service = DealService()
archived_deal_service = ArchivedDealService()
lead_service = LeadService()

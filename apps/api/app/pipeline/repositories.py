from __future__ import annotations

import uuid
from collections.abc import Sequence
from typing import Any

from sqlalchemy import Select, case, func, select
from sqlalchemy.orm import Session, aliased, contains_eager

from app.pipeline.models import Deal, DealStage, ListItem, TERMINAL_DEAL_STATUSES


PLAIN_SORT_COLUMNS = {
    "id": Deal.id,
    "deal_name": Deal.deal_name,
    "contact_name": Deal.contact_name,
    "status": Deal.status,
    "open_date": Deal.open_date,
    "deal_value": Deal.deal_value,
    "next_step_date": Deal.next_step_date,
    "created_at": Deal.created_at,
}
DEFAULT_SORT = "created_at"


class DealQueryRepository:
    """Deal reads with the stage and lookup names resolved through outer joins."""

    def __init__(self) -> None:
        self._stage = aliased(DealStage, name="stage")
        self._source = aliased(ListItem, name="src")
        self._partner = aliased(ListItem, name="partner")
        self._platform = aliased(ListItem, name="platform")
        self._product = aliased(ListItem, name="product")

    def base_query(self) -> Select[tuple[Deal]]:
        return (
            select(Deal)
            .outerjoin(Deal.deal_stage.of_type(self._stage))
            .outerjoin(Deal.source.of_type(self._source))
            .outerjoin(Deal.partner.of_type(self._partner))
            .outerjoin(Deal.platform.of_type(self._platform))
            .outerjoin(Deal.product.of_type(self._product))
            .options(
                contains_eager(Deal.deal_stage.of_type(self._stage)),
                contains_eager(Deal.source.of_type(self._source)),
                contains_eager(Deal.partner.of_type(self._partner)),
                contains_eager(Deal.platform.of_type(self._platform)),
                contains_eager(Deal.product.of_type(self._product)),
            )
            .execution_options(populate_existing=True)
        )

    def get(self, session: Session, deal_id: uuid.UUID) -> Deal | None:
        return session.scalars(self.base_query().where(Deal.id == deal_id)).unique().first()

    def active_deals(self, session: Session) -> Sequence[Deal]:
        stmt = self.base_query().where(Deal.status.not_in(TERMINAL_DEAL_STATUSES)).order_by(Deal.created_at, Deal.id)
        return session.scalars(stmt).unique().all()

    def terminal_deals(self, session: Session) -> Sequence[Deal]:
        stmt = self.base_query().where(Deal.status.in_(TERMINAL_DEAL_STATUSES)).order_by(Deal.created_at, Deal.id)
        return session.scalars(stmt).unique().all()

    def list_deals(self, session: Session, *, sort: str = DEFAULT_SORT, order: str = "asc") -> Sequence[Deal]:
        stmt = self.base_query().order_by(*self._order_by(sort, order == "desc"), Deal.id)
        return session.scalars(stmt).unique().all()

    def name_exists(self, session: Session, name: str) -> bool:
        normalized = name.strip().lower()
        if not normalized:
            return False
        stmt = select(func.count(Deal.id)).where(func.lower(func.trim(Deal.deal_name)) == normalized)
        return (session.scalar(stmt) or 0) > 0

    def _order_by(self, sort: str, descending: bool) -> list[Any]:
        def direction(column: Any) -> Any:
            return column.desc() if descending else column.asc()

        if sort == "close_date":
            return [direction(Deal.close_year), direction(Deal.close_month)]
        if sort == "stage":
            return [direction(self._stage.probability)]
        if sort == "platform":
            return [direction(self._platform.value)]
        if sort == "product":
            return [direction(self._product.value)]
        if sort == "partner":
            return [direction(self._partner.value)]
        if sort == "priority":
            return [direction(Deal.is_priority)]
        if sort == "color":
            return [case((Deal.row_color.is_(None), 1), else_=0), direction(Deal.row_color)]
        return [direction(PLAIN_SORT_COLUMNS.get(sort, PLAIN_SORT_COLUMNS[DEFAULT_SORT]))]

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.pipeline.models import DealStage, ListItem


logger = logging.getLogger("app.pipeline.seed")

DEFAULT_STAGES = [
    ("Prospect", 10),
    ("Qualified", 25),
    ("Proposal", 50),
    ("Negotiation", 75),
    ("Closed Won", 100),
]

DEFAULT_LIST_ITEMS = [
    ("partner", "Partner A"),
    ("partner", "Partner B"),
    ("partner", "Direct"),
    ("platform", "Web"),
    ("platform", "Mobile"),
    ("platform", "Desktop"),
    ("product", "Product X"),
    ("product", "Product Y"),
    ("product", "Service Z"),
]


def seed_defaults(session: Session) -> dict[str, int]:
    created = {"stages": 0, "list_items": 0}

    if not session.scalar(select(func.count(DealStage.id))):
        for sort_order, (name, probability) in enumerate(DEFAULT_STAGES, start=1):
            session.add(DealStage(name=name, probability=probability, sort_order=sort_order))
            created["stages"] += 1

    if not session.scalar(select(func.count(ListItem.id))):
        positions: dict[str, int] = {}
        for list_type, value in DEFAULT_LIST_ITEMS:
            positions[list_type] = positions.get(list_type, 0) + 1
            session.add(ListItem(list_type=list_type, value=value, sort_order=positions[list_type]))
            created["list_items"] += 1

    session.commit()
    if created["stages"] or created["list_items"]:
        logger.info(
            "lookups.seeded",
            extra={"stage_count": created["stages"], "list_item_count": created["list_items"]},
        )
    return created

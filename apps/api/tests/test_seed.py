from __future__ import annotations

from collections.abc import Generator

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.database import Base
from app.pipeline.models import DealStage, ListItem
from app.pipeline.seed import DEFAULT_LIST_ITEMS, DEFAULT_STAGES, seed_defaults


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


def test_seed_populates_empty_tables(db_session: Session, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level("INFO", logger="app.pipeline.seed")

    created = seed_defaults(db_session)

    assert created == {"stages": len(DEFAULT_STAGES), "list_items": len(DEFAULT_LIST_ITEMS)}
    stages = db_session.scalars(select(DealStage).order_by(DealStage.sort_order)).all()
    assert [(stage.name, stage.probability) for stage in stages] == DEFAULT_STAGES
    partner_order = db_session.scalars(
        select(ListItem.value).where(ListItem.list_type == "partner").order_by(ListItem.sort_order)
    ).all()
    assert partner_order == ["Partner A", "Partner B", "Direct"]

    seeded = [record for record in caplog.records if record.getMessage() == "lookups.seeded"]
    assert seeded
    assert getattr(seeded[-1], "stage_count") == len(DEFAULT_STAGES)


def test_seed_is_idempotent(db_session: Session) -> None:
    seed_defaults(db_session)

    again = seed_defaults(db_session)

    assert again == {"stages": 0, "list_items": 0}
    assert db_session.scalar(select(func.count(DealStage.id))) == len(DEFAULT_STAGES)
    assert db_session.scalar(select(func.count(ListItem.id))) == len(DEFAULT_LIST_ITEMS)


def test_seed_leaves_customised_lookups_alone(db_session: Session) -> None:
    db_session.add(DealStage(name="Only Stage", probability=60, sort_order=1))
    db_session.commit()

    created = seed_defaults(db_session)

    assert created["stages"] == 0
    assert created["list_items"] == len(DEFAULT_LIST_ITEMS)
    assert db_session.scalars(select(DealStage.name)).all() == ["Only Stage"]

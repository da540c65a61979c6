from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timezone

import pytest
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.config import get_settings
from app.core.database import Base
from app.pipeline.clock import FixedClock
from app.pipeline.models import CloseMonthLog, Deal, MonthlySnapshot
from app.pipeline.tasks import run_auto_close


@pytest.fixture()
def session_factory() -> Generator[sessionmaker, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    try:
        yield factory
    finally:
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


def _count(factory: sessionmaker, model: type) -> int:
    with factory() as session:
        return session.scalar(select(func.count()).select_from(model)) or 0


def test_auto_close_runs_on_first_day(session_factory: sessionmaker) -> None:
    with session_factory() as session:
        session.add(Deal(deal_name="Won Deal", status="won", open_date=date(2024, 6, 2)))
        session.commit()

    result = run_auto_close(session_factory, FixedClock(datetime(2024, 8, 1, 0, 0, tzinfo=timezone.utc)))

    assert result is not None
    assert result["closedMonth"] == 7
    assert result["closedYear"] == 2024
    assert result["archivedCount"] == 1
    assert result["alreadyClosed"] is False
    with session_factory() as session:
        ledger = session.scalar(select(CloseMonthLog))
        assert ledger is not None
        assert ledger.closed_by == "auto"
    assert audit.entries_for("pipeline.month_close", "close")[-1]["actor_user_id"] == "system:scheduler"


def test_auto_close_ignores_other_days(session_factory: sessionmaker) -> None:
    result = run_auto_close(session_factory, FixedClock(datetime(2024, 8, 2, tzinfo=timezone.utc)))

    assert result is None
    assert _count(session_factory, MonthlySnapshot) == 0
    assert _count(session_factory, CloseMonthLog) == 0


def test_auto_close_skips_closed_month(session_factory: sessionmaker) -> None:
    with session_factory() as session:
        session.add(CloseMonthLog(closed_month=7, closed_year=2024, closed_by="manual"))
        session.commit()

    result = run_auto_close(session_factory, FixedClock(datetime(2024, 8, 1, tzinfo=timezone.utc)))

    assert result is None
    assert _count(session_factory, MonthlySnapshot) == 0
    assert _count(session_factory, CloseMonthLog) == 1


def test_auto_close_handles_january_rollover(session_factory: sessionmaker) -> None:
    result = run_auto_close(session_factory, FixedClock(datetime(2025, 1, 1, 0, 5, tzinfo=timezone.utc)))

    assert result is not None
    assert (result["closedMonth"], result["closedYear"]) == (12, 2024)


def test_auto_close_respects_disable_flag(session_factory: sessionmaker, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("AUTO_CLOSE_ENABLED", "false")
    get_settings.cache_clear()

    result = run_auto_close(session_factory, FixedClock(datetime(2024, 8, 1, tzinfo=timezone.utc)))

    assert result is None
    assert _count(session_factory, CloseMonthLog) == 0

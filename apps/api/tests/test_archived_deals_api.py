from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.database import Base, get_db
from app.main import app
from app.pipeline.api import get_clock, get_current_user
from app.pipeline.clock import Clock, FixedClock
from app.pipeline.models import ArchivedDeal, Deal
from app.pipeline.service import ActorUser


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


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            roles=["user"],
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    def override_get_clock() -> Clock:
        return FixedClock(datetime(2024, 7, 15, tzinfo=timezone.utc))

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_clock] = override_get_clock
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def _backfill(client: TestClient, **overrides: object) -> dict:
    payload: dict[str, object] = {
        "deal_name": "Historic",
        "status": "won",
        "archived_for_month": 5,
        "archived_for_year": 2024,
    }
    payload.update(overrides)
    response = client.post("/api/archived", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_list_filters_by_status_and_orders_newest_period_first(client: TestClient) -> None:
    _backfill(client, deal_name="March Win", archived_for_month=3)
    _backfill(client, deal_name="May Win", archived_for_month=5)
    _backfill(client, deal_name="Old Win", archived_for_month=11, archived_for_year=2023)
    _backfill(client, deal_name="May Loss", status="lost")

    won = client.get("/api/archived/won")
    lost = client.get("/api/archived/lost")

    assert won.status_code == 200
    assert [row["deal_name"] for row in won.json()] == ["May Win", "March Win", "Old Win"]
    assert [row["deal_name"] for row in lost.json()] == ["May Loss"]


def test_list_rejects_non_terminal_status(client: TestClient) -> None:
    response = client.get("/api/archived/active")
    assert response.status_code == 422


def test_backfill_requires_terminal_status(client: TestClient) -> None:
    response = client.post(
        "/api/archived",
        json={"deal_name": "Nope", "status": "active", "archived_for_month": 1, "archived_for_year": 2024},
    )
    assert response.status_code == 422


def test_backfill_records_audit(client: TestClient) -> None:
    created = _backfill(client, deal_value=900, partner_name="Partner A")

    assert created["deal_value"] == 900.0
    assert created["partner_name"] == "Partner A"
    assert created["original_deal_id"] is None
    entries = audit.entries_for("pipeline.archived_deal", "backfill")
    assert entries[-1]["entity_id"] == created["id"]


def test_update_ignores_null_fields(client: TestClient) -> None:
    created = _backfill(client, notes="keep me", deal_value=100)

    response = client.put(
        f"/api/archived/{created['id']}",
        json={"notes": None, "deal_value": 150, "archived_for_month": 6},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["notes"] == "keep me"
    assert body["deal_value"] == 150.0
    assert body["archived_for_month"] == 6


def test_delete_archived(client: TestClient, db_session: Session) -> None:
    created = _backfill(client)

    response = client.delete(f"/api/archived/{created['id']}")

    assert response.status_code == 200
    assert response.json() == {"success": True}
    assert db_session.scalar(select(func.count()).select_from(ArchivedDeal)) == 0


def test_restore_creates_active_deal_without_lookups(client: TestClient, db_session: Session) -> None:
    created = _backfill(
        client,
        deal_name="Comeback",
        contact_name="Ana Lopez",
        partner_name="Partner A",
        product_name="Product X",
        deal_stage_name="Proposal",
        deal_value=3000,
        close_month=6,
        close_year=2024,
    )

    response = client.post(f"/api/archived/{created['id']}/restore")

    assert response.status_code == 200
    deal = response.json()
    assert deal["deal_name"] == "Comeback"
    assert deal["contact_name"] == "Ana Lopez"
    assert deal["status"] == "active"
    assert deal["open_date"] == "2024-07-15"
    assert deal["partner_id"] is None
    assert deal["product_id"] is None
    assert deal["deal_stage_id"] is None
    assert deal["deal_value"] == 3000.0
    assert deal["weighted_forecast"] == 0.0
    assert db_session.scalar(select(func.count()).select_from(ArchivedDeal)) == 0
    assert db_session.scalar(select(func.count()).select_from(Deal)) == 1
    assert events.published_events[-1]["event_type"] == "pipeline.archived_deal.restored"


def test_missing_archived_returns_404(client: TestClient) -> None:
    response = client.post(f"/api/archived/{uuid.uuid4()}/restore")

    assert response.status_code == 404
    assert response.json()["code"] == "archived_restore_failed"
    assert response.json()["error"] == "Archived deal not found"

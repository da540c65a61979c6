from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.database import Base, get_db
from app.main import app
from app.pipeline.api import get_clock, get_current_user
from app.pipeline.clock import Clock, FixedClock
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


def _create_lead(client: TestClient, **payload: object) -> dict:
    response = client.post("/api/leads", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


def test_create_lead_defaults_status_and_received_date(client: TestClient) -> None:
    lead = _create_lead(client, firstname="Dana", email="dana@example.com", source="website")

    assert lead["status"] == "new"
    assert lead["received_date"] == "2024-07-15"
    assert lead["converted_deal_id"] is None
    assert events.published_events[-1]["event_type"] == "pipeline.lead.created"


def test_list_puts_new_leads_first(client: TestClient) -> None:
    older_new = _create_lead(client, company="Older", received_date="2024-07-01")
    handled = _create_lead(client, company="Handled", received_date="2024-07-14")
    newer_new = _create_lead(client, company="Newer", received_date="2024-07-10")
    assert client.put(f"/api/leads/{handled['id']}/status", json={"status": "not_converted"}).status_code == 200

    response = client.get("/api/leads")

    assert response.status_code == 200
    assert [row["id"] for row in response.json()] == [newer_new["id"], older_new["id"], handled["id"]]


def test_status_update_rejects_unknown_value(client: TestClient) -> None:
    lead = _create_lead(client, company="Acme")
    response = client.put(f"/api/leads/{lead['id']}/status", json={"status": "archived"})
    assert response.status_code == 422


def test_convert_creates_deal_from_lead(client: TestClient) -> None:
    lead = _create_lead(
        client,
        firstname="Dana",
        lastname="Scully",
        company="  Initech  ",
        message="Needs 40 seats",
    )

    response = client.post(f"/api/leads/{lead['id']}/convert")

    assert response.status_code == 200
    converted = response.json()
    assert converted["status"] == "converted"
    assert converted["converted_deal_id"]

    deal = client.get(f"/api/deals/{converted['converted_deal_id']}").json()
    assert deal["deal_name"] == "Initech"
    assert deal["contact_name"] == "Dana Scully"
    assert deal["notes"] == "Needs 40 seats"
    assert deal["status"] == "active"
    assert deal["open_date"] == "2024-07-15"
    assert audit.entries_for("pipeline.lead", "convert")[-1]["before"] == {"status": "new"}


def test_convert_prefers_requested_deal_name(client: TestClient) -> None:
    lead = _create_lead(client, company="Initech")

    converted = client.post(f"/api/leads/{lead['id']}/convert", json={"deal_name": "Initech Expansion"}).json()

    deal = client.get(f"/api/deals/{converted['converted_deal_id']}").json()
    assert deal["deal_name"] == "Initech Expansion"


def test_convert_without_company_uses_default_name(client: TestClient) -> None:
    lead = _create_lead(client, email="nobody@example.com")

    converted = client.post(f"/api/leads/{lead['id']}/convert").json()

    deal = client.get(f"/api/deals/{converted['converted_deal_id']}").json()
    assert deal["deal_name"] == "New Deal"
    assert deal["contact_name"] is None


def test_second_convert_conflicts(client: TestClient) -> None:
    lead = _create_lead(client, company="Twice")
    assert client.post(f"/api/leads/{lead['id']}/convert").status_code == 200

    response = client.post(f"/api/leads/{lead['id']}/convert")

    assert response.status_code == 409
    assert response.json()["code"] == "lead_convert_failed"
    assert response.json()["error"] == "Lead already converted"
    assert len(client.get("/api/deals").json()) == 1


def test_delete_lead(client: TestClient) -> None:
    lead = _create_lead(client, company="Gone")

    response = client.delete(f"/api/leads/{lead['id']}")

    assert response.status_code == 200
    assert client.get("/api/leads").json() == []
    missing = client.delete(f"/api/leads/{uuid.uuid4()}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "Lead not found"

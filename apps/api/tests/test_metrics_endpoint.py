from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.auth import AuthUser, get_current_user as auth_get_current_user
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.pipeline.api import get_clock, get_current_user as pipeline_get_current_user
from app.pipeline.clock import FixedClock
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
def configure_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("METRICS_ENABLED", "true")
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_pipeline_user() -> ActorUser:
        return ActorUser(user_id="metrics-user", roles=["user"], correlation_id="metrics-corr-1")

    def override_auth_user() -> AuthUser:
        return AuthUser(sub="metrics-admin", roles=["system.metrics.read"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[pipeline_get_current_user] = override_pipeline_user
    app.dependency_overrides[auth_get_current_user] = override_auth_user
    app.dependency_overrides[get_clock] = lambda: FixedClock(datetime(2024, 7, 15, tzinfo=timezone.utc))

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_month_close_metrics(client: TestClient) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    deal = client.post("/api/deals", json={"deal_name": "Metrics Deal", "status": "won"})
    assert deal.status_code == 201
    fetched = client.get(f"/api/deals/{deal.json()['id']}")
    assert fetched.status_code == 200

    close = client.post("/api/close-month")
    assert close.status_code == 200
    rerun = client.post("/api/close-month")
    assert rerun.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "month_close_runs_total" in body
    assert "month_close_duration_seconds" in body
    assert "month_close_archived_deals_total" in body
    assert "snapshot_recomputations_total" in body

    assert 'path="/health"' in body
    assert 'path="/api/deals/{deal_id}"' in body
    assert 'trigger="manual"' in body
    assert 'outcome="success"' in body
    assert 'outcome="rerun"' in body


def test_metrics_endpoint_requires_role(client: TestClient) -> None:
    app.dependency_overrides[auth_get_current_user] = lambda: AuthUser(sub="plain-user", roles=["user"])

    response = client.get("/metrics")

    assert response.status_code == 403


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()

    response = client.get("/metrics")

    assert response.status_code == 404


def test_only_health_and_metrics_sit_outside_the_api_prefix(client: TestClient) -> None:
    assert client.get("/me").status_code == 404

    top_level = {route.path for route in app.routes if not route.path.startswith(("/api", "/docs", "/redoc", "/openapi"))}
    assert top_level == {"/health", "/metrics"}

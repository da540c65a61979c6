from __future__ import annotations

import os
from collections.abc import Generator
from datetime import datetime, timezone

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("OTEL_ENABLED", "true")

from app.core.config import get_settings
from app.core.database import Base, get_db
from app.main import app
from app.otel import setup_inmemory_otel
from app.pipeline.api import get_clock, get_current_user
from app.pipeline.clock import FixedClock
from app.pipeline.month_close import month_close_service
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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def span_exporter() -> InMemorySpanExporter:
    exporter = setup_inmemory_otel("api")
    exporter.clear()
    return exporter


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

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_clock] = lambda: FixedClock(datetime(2024, 7, 15, tzinfo=timezone.utc))
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_request_span_contains_correlation_id(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post("/api/leads", json={"company": "Span Co"}, headers={"X-Correlation-Id": "otel-corr-1"})
    assert response.status_code == 201

    spans = span_exporter.get_finished_spans()
    assert spans
    assert any(span.attributes.get("correlation_id") == "otel-corr-1" for span in spans)


def test_month_close_spans_cover_each_step(client: TestClient, span_exporter: InMemorySpanExporter) -> None:
    response = client.post("/api/close-month", headers={"X-Correlation-Id": "otel-close-1"})
    assert response.status_code == 200

    spans = span_exporter.get_finished_spans()
    names = {span.name for span in spans}
    assert {
        "pipeline.month_close",
        "pipeline.month_close.aggregate",
        "pipeline.month_close.snapshot",
        "pipeline.month_close.archive",
        "pipeline.month_close.ledger",
    } <= names

    root = next(span for span in spans if span.name == "pipeline.month_close")
    assert root.attributes.get("month_close.month") == 6
    assert root.attributes.get("month_close.year") == 2024
    assert root.attributes.get("month_close.trigger") == "manual"
    assert root.attributes.get("correlation_id") == "otel-close-1"

    children = [span for span in spans if span.name.startswith("pipeline.month_close.")]
    assert all(span.parent is not None and span.parent.span_id == root.context.span_id for span in children)


def test_failed_close_marks_span_as_error(
    client: TestClient,
    span_exporter: InMemorySpanExporter,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def broken_record(*args: object, **kwargs: object) -> bool:
        raise OperationalError("INSERT INTO close_month_log", {}, Exception("disk full"))

    monkeypatch.setattr(month_close_service.ledger, "record", broken_record)

    response = client.post("/api/close-month")

    assert response.status_code == 500
    assert response.json()["code"] == "database_error"
    root = next(span for span in span_exporter.get_finished_spans() if span.name == "pipeline.month_close")
    assert root.status.status_code == StatusCode.ERROR

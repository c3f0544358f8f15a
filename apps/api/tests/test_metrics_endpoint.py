from __future__ import annotations

from collections import defaultdict
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from prometheus_client.parser import text_string_to_metric_families
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from opsdesk.core.auth import AuthUser, get_current_user
from opsdesk.core.config import get_settings
from opsdesk.core.database import Base, get_db
from opsdesk.events.models import Lead
from opsdesk.main import app


def _samples(exposition: str) -> dict[str, list[dict[str, str]]]:
    found: dict[str, list[dict[str, str]]] = defaultdict(list)
    for family in text_string_to_metric_families(exposition):
        for sample in family.samples:
            found[sample.name].append(dict(sample.labels))
    return found


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
def actor() -> dict[str, AuthUser]:
    return {"current": AuthUser(sub="metrics-admin", email="", name="Admin", roles=["system.metrics.read"])}


@pytest.fixture()
def client(db_session: Session, actor: dict[str, AuthUser]) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return actor["current"]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


def test_metrics_endpoint_exposes_http_and_event_metrics(client: TestClient, db_session: Session) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    lead = Lead(status="novo")
    db_session.add(lead)
    db_session.commit()

    closed = client.post(
        "/api/events/lead",
        json={"leadId": lead.id, "action": "close_with_os", "payload": {"os": "1", "partsValue": 10, "laborValue": 5}},
    )
    assert closed.status_code == 200
    rejected = client.post("/api/events/lead", json={"leadId": lead.id, "action": "discard", "payload": {}})
    assert rejected.status_code == 400

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text

    assert "http_requests_total" in body
    assert "http_request_duration_seconds" in body
    assert "opsdesk_service_orders_created_total" in body
    samples = _samples(body)
    assert any(labels.get("path") == "/health" for labels in samples["http_requests_total"])
    assert any(labels.get("path") == "/api/events/lead" for labels in samples["http_requests_total"])
    assert {"entity_kind": "lead", "action": "close_with_os"} in samples["opsdesk_events_recorded_total"]
    assert {"entity_kind": "lead", "reason": "validation"} in samples["opsdesk_events_rejected_total"]


def test_metrics_endpoint_requires_permission(client: TestClient, actor: dict[str, AuthUser]) -> None:
    actor["current"] = AuthUser(sub="plain", email="", name="Plain", roles=["user"])
    response = client.get("/metrics")
    assert response.status_code == 403
    assert response.json()["success"] is False


def test_metrics_endpoint_hidden_when_disabled(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("METRICS_ENABLED", "false")
    get_settings.cache_clear()
    assert client.get("/metrics").status_code == 404

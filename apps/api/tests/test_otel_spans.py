from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from opsdesk.core.auth import AuthUser, get_current_user
from opsdesk.core.config import get_settings
from opsdesk.core.database import Base, get_db
from opsdesk.events.api import get_ticket_forwarder
from opsdesk.events.forwarder import TicketActionForwarder
from opsdesk.events.models import Lead, Ticket
from opsdesk.main import app
from opsdesk.otel import setup_inmemory_otel

TICKET_ID = "8b0e6f2a-1c3d-4e5f-a6b7-c8d9e0f1a2b3"


class NullAdapter:
    def add_tags(self, ticket_id: str, tags: list[str]) -> None:
        return None

    def remove_tags(self, ticket_id: str, tags: list[str]) -> None:
        return None

    def close_ticket(self, ticket_id: str, resolution: str | None = None) -> None:
        return None

    def update_ticket(self, ticket_id: str, fields: dict[str, str]) -> None:
        return None


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
    exporter = setup_inmemory_otel("opsdesk-api")
    exporter.clear()
    return exporter


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return AuthUser(sub="user-1", email="user@example.com", name="Maria", roles=["user"])

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    app.dependency_overrides[get_ticket_forwarder] = lambda: TicketActionForwarder(NullAdapter())
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_lead_event_span_contains_correlation_id(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    lead = Lead(status="novo")
    db_session.add(lead)
    db_session.commit()

    response = client.post(
        "/api/events/lead",
        json={"leadId": lead.id, "action": "discard", "payload": {"reason": "duplicado"}},
        headers={"X-Correlation-Id": "otel-corr-1"},
    )
    assert response.status_code == 200

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "events.record_lead"]
    assert spans
    assert any(
        span.attributes.get("correlation_id") == "otel-corr-1"
        and span.attributes.get("lead_id") == lead.id
        and span.attributes.get("action") == "discard"
        for span in spans
    )


def test_ticket_event_span_records_forwarding(
    client: TestClient,
    db_session: Session,
    span_exporter: InMemorySpanExporter,
) -> None:
    db_session.add(Ticket(ticket_id=TICKET_ID, status="aberto"))
    db_session.commit()

    response = client.post(
        "/api/events/ticket",
        json={"ticketId": TICKET_ID, "action": "add_tags", "payload": {"tags": ["vip"]}},
        headers={"X-Correlation-Id": "otel-corr-2"},
    )
    assert response.status_code == 200

    spans = [span for span in span_exporter.get_finished_spans() if span.name == "events.record_ticket"]
    assert any(
        span.attributes.get("forwarded") is True and span.attributes.get("correlation_id") == "otel-corr-2"
        for span in spans
    )

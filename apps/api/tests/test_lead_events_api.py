from __future__ import annotations

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from opsdesk.core.auth import AuthUser, get_current_user
from opsdesk.core.config import get_settings
from opsdesk.core.database import Base, get_db
from opsdesk.events.api import get_lead_event_service
from opsdesk.events.models import ImmutableEventError, Lead, LeadEvent, ServiceOrder
from opsdesk.events.service import LeadEventService
from opsdesk.events.store import AuditEventStore
from opsdesk.main import app


ACTORS = {
    "maria": AuthUser(sub="user-maria", email="maria@example.com", name="Maria Silva", roles=["user"]),
    "joao": AuthUser(sub="user-joao", email="joao@example.com", name="Joao", roles=["user"]),
}


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
def lead(db_session: Session) -> Lead:
    row = Lead(status="atribuido", consultor="Maria Silva", empresa="Fazenda Boa Vista", nome_contato="Carlos")
    db_session.add(row)
    db_session.commit()
    return row


@pytest.fixture()
def client(db_session: Session) -> Generator[tuple[TestClient, dict[str, str]], None, None]:
    current = {"actor": "maria"}

    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user() -> AuthUser:
        return ACTORS[current["actor"]]

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client, current
    app.dependency_overrides.clear()


def _post(client: TestClient, lead_id: object, action: str, payload: dict | None = None):
    return client.post("/api/events/lead", json={"leadId": lead_id, "action": action, "payload": payload or {}})


def test_assign_updates_status_and_consultant(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    test_client, _ = client
    response = _post(test_client, lead.id, "assign", {"assignee": "  Joao "})
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["event"]["leadId"] == lead.id
    assert body["event"]["action"] == "assign"
    assert body["event"]["actorUserId"] == "user-maria"
    assert body["event"]["actorName"] == "Maria Silva"
    assert body["event"]["source"] == "middleware"
    assert body["event"]["payload"] == {"assignee": "Joao"}

    db_session.refresh(lead)
    assert lead.status == "atribuido"
    assert lead.consultor == "Joao"


def test_register_contact_by_other_consultant_is_forbidden(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    test_client, current = client
    current["actor"] = "joao"
    response = _post(test_client, lead.id, "register_contact", {"note": "liguei"})
    assert response.status_code == 403
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "forbidden"
    assert body["message"]
    assert db_session.scalar(select(func.count()).select_from(LeadEvent)) == 0

    current["actor"] = "maria"
    allowed = _post(test_client, lead.id, "register_contact", {"note": "liguei"})
    assert allowed.status_code == 200
    db_session.refresh(lead)
    assert lead.status == "em_contato"


def test_validation_failures_return_400_naming_the_field(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    test_client, _ = client
    response = _post(test_client, lead.id, "discard", {"reason": "   "})
    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "validation_error"
    assert body["message"] == "reason required for discard"
    assert body["details"]["field"] == "reason"

    unknown = _post(test_client, lead.id, "add_tags", {"tags": ["x"]})
    assert unknown.status_code == 400
    assert unknown.json()["message"] == "action not allowed for lead"

    bad_id = _post(test_client, "abc", "discard", {"reason": "spam"})
    assert bad_id.status_code == 400
    assert bad_id.json()["details"]["field"] == "leadId"

    not_object = test_client.post("/api/events/lead", json=["leadId"])
    assert not_object.status_code == 400

    malformed = test_client.post(
        "/api/events/lead",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert malformed.status_code == 400
    assert malformed.json()["code"] == "validation_error"

    assert db_session.scalar(select(func.count()).select_from(LeadEvent)) == 0


def test_unknown_lead_returns_404(client: tuple[TestClient, dict[str, str]]) -> None:
    test_client, _ = client
    response = _post(test_client, 999, "discard", {"reason": "spam"})
    assert response.status_code == 404
    assert response.json()["success"] is False


def test_out_of_range_numbers_are_rejected_with_400(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    test_client, _ = client
    huge_amount = _post(test_client, lead.id, "close_with_os", {"os": "1", "partsValue": 10**400, "laborValue": 0})
    assert huge_amount.status_code == 400
    assert huge_amount.json()["details"]["field"] == "partsValue"

    huge_id = _post(test_client, 99999999999999999999999, "discard", {"reason": "spam"})
    assert huge_id.status_code == 400
    assert huge_id.json()["details"]["field"] == "leadId"

    timeline = test_client.get("/api/leads/99999999999999999999999/events")
    assert timeline.status_code == 400
    assert timeline.json()["details"]["field"] == "leadId"

    assert db_session.scalar(select(func.count()).select_from(LeadEvent)) == 0
    assert db_session.scalar(select(func.count()).select_from(ServiceOrder)) == 0


def test_close_with_os_stores_only_the_service_order_link(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    test_client, _ = client
    response = _post(
        test_client,
        lead.id,
        "close_with_os",
        {"os": "OS-123", "partsValue": "1.200,50", "laborValue": 200, "note": "troca de filtro", "serviceOrderId": 77},
    )
    assert response.status_code == 200
    event = response.json()["event"]
    order = db_session.scalars(select(ServiceOrder)).one()
    assert event["payload"] == {"serviceOrderId": order.id}
    assert order.os_number == "OS-123"
    assert order.parts_value == 1200.5
    assert order.labor_value == 200.0
    assert order.note == "troca de filtro"

    stored = db_session.scalars(select(LeadEvent)).one()
    for key in ("os", "partsValue", "laborValue", "note"):
        assert key not in stored.payload

    db_session.refresh(lead)
    assert lead.status == "fechado_com_os"


def test_timeline_reflects_service_order_corrections(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    test_client, _ = client
    assert _post(test_client, lead.id, "register_contact", {"note": "primeiro contato"}).status_code == 200
    closed = _post(test_client, lead.id, "close_with_os", {"os": "55", "partsValue": 100, "laborValue": 50})
    assert closed.status_code == 200
    order_id = closed.json()["event"]["payload"]["serviceOrderId"]

    timeline = test_client.get(f"/api/leads/{lead.id}/events")
    assert timeline.status_code == 200
    items = timeline.json()["items"]
    assert [item["action"] for item in items] == ["close_with_os", "register_contact"]
    assert items[0]["payload"] == {"serviceOrderId": order_id, "os": "55", "partsValue": 100.0, "laborValue": 50.0}

    patched = test_client.patch(
        f"/api/lead-service-orders/{order_id}",
        json={"partsValue": "1.500,00", "laborValue": "80", "note": "revisado"},
    )
    assert patched.status_code == 200
    assert patched.json()["serviceOrder"]["partsValue"] == 1500.0

    items = test_client.get(f"/api/leads/{lead.id}/events").json()["items"]
    assert items[0]["payload"]["partsValue"] == 1500.0
    assert items[0]["payload"]["laborValue"] == 80.0
    assert items[0]["payload"]["note"] == "revisado"

    stored = db_session.scalars(select(LeadEvent).where(LeadEvent.action == "close_with_os")).one()
    assert stored.payload == {"serviceOrderId": order_id}


def test_service_order_patch_validation(
    client: tuple[TestClient, dict[str, str]],
    lead: Lead,
) -> None:
    test_client, _ = client
    closed = _post(test_client, lead.id, "close_with_os", {"os": "55", "partsValue": 100, "laborValue": 50})
    order_id = closed.json()["event"]["payload"]["serviceOrderId"]

    negative = test_client.patch(f"/api/lead-service-orders/{order_id}", json={"partsValue": -1, "laborValue": 0})
    assert negative.status_code == 400
    assert negative.json()["details"]["field"] == "partsValue"

    missing = test_client.patch(f"/api/lead-service-orders/{order_id}", json={"partsValue": 10})
    assert missing.status_code == 400
    assert missing.json()["details"]["field"] == "laborValue"

    unknown = test_client.patch("/api/lead-service-orders/9999", json={"partsValue": 1, "laborValue": 1})
    assert unknown.status_code == 404

    huge_amount = test_client.patch(f"/api/lead-service-orders/{order_id}", json={"partsValue": 1, "laborValue": 10**400})
    assert huge_amount.status_code == 400
    assert huge_amount.json()["details"]["field"] == "laborValue"

    huge_id = test_client.patch("/api/lead-service-orders/99999999999999999999999", json={"partsValue": 1, "laborValue": 1})
    assert huge_id.status_code == 400
    assert huge_id.json()["code"] == "validation_error"


def test_failed_event_write_rolls_back_the_whole_transition(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    class FailingStore(AuditEventStore):
        def append(self, session, event):  # type: ignore[no-untyped-def]
            raise SQLAlchemyError("disk full")

    test_client, _ = client
    app.dependency_overrides[get_lead_event_service] = lambda: LeadEventService(FailingStore())
    response = _post(test_client, lead.id, "close_with_os", {"os": "55", "partsValue": 100, "laborValue": 50})
    assert response.status_code == 500
    body = response.json()
    assert body["code"] == "persistence_error"
    assert "disk full" not in body["message"]

    assert db_session.scalar(select(func.count()).select_from(ServiceOrder)) == 0
    db_session.refresh(lead)
    assert lead.status == "atribuido"


def test_repeated_submission_is_not_deduplicated(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    test_client, _ = client
    payload = {"os": "55", "partsValue": 100, "laborValue": 50}
    assert _post(test_client, lead.id, "close_with_os", payload).status_code == 200
    assert _post(test_client, lead.id, "close_with_os", payload).status_code == 200
    assert db_session.scalar(select(func.count()).select_from(ServiceOrder)) == 2
    assert db_session.scalar(select(func.count()).select_from(LeadEvent)) == 2


def test_events_are_append_only(
    client: tuple[TestClient, dict[str, str]],
    db_session: Session,
    lead: Lead,
) -> None:
    test_client, _ = client
    assert _post(test_client, lead.id, "discard", {"reason": "duplicado"}).status_code == 200
    stored = db_session.scalars(select(LeadEvent)).one()

    stored.action = "assign"
    with pytest.raises(ImmutableEventError):
        db_session.flush()
    db_session.rollback()

    db_session.delete(db_session.scalars(select(LeadEvent)).one())
    with pytest.raises(ImmutableEventError):
        db_session.flush()
    db_session.rollback()
    assert db_session.scalar(select(func.count()).select_from(LeadEvent)) == 1


def test_action_catalog_endpoint(client: tuple[TestClient, dict[str, str]]) -> None:
    test_client, _ = client
    response = test_client.get("/api/events/actions/lead")
    assert response.status_code == 200
    items = {item["id"]: item for item in response.json()["items"]}
    assert items["close_with_os"]["requiredFields"] == ["service_order"]
    assert items["convert_to_ticket"]["disabled"] is True
    assert items["convert_to_ticket"]["defaultPayload"] == {"method": "manual"}

    assert test_client.get("/api/events/actions/invoice").status_code == 400

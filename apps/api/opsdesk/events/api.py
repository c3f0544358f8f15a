from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, Body, Depends, Path, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from opsdesk.context import get_correlation_id
from opsdesk.core.auth import AuthUser, get_current_user
from opsdesk.core.config import get_settings
from opsdesk.core.database import get_db
from opsdesk.events.activity import ActivityMetricsService, coerce_range
from opsdesk.events.catalog import EntityKind, definitions_for
from opsdesk.events.errors import EventError, ValidationError
from opsdesk.events.forwarder import TicketActionForwarder
from opsdesk.events.partner import PartnerTicketingClient, TokenCache
from opsdesk.events.schemas import ActionDefinitionRead
from opsdesk.events.service import LeadEventService, ServiceOrderService, TicketEventService
from opsdesk.events.store import AuditEventStore
from opsdesk.events.validator import MAX_ROW_ID

events_router = APIRouter(prefix="/api", tags=["events"])
metrics_router = APIRouter(prefix="/api/metrics", tags=["metrics"])

partner_token_cache = TokenCache()
service_order_service = ServiceOrderService()
activity_metrics_service = ActivityMetricsService()


@dataclass
class ErrorEnvelope:
    code: str
    message: str
    details: Any
    correlation_id: str | None
    success: bool = False


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: Any = None,
) -> JSONResponse:
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    payload = ErrorEnvelope(
        code=code,
        message=message,
        details=details,
        correlation_id=correlation_id,
    )
    return JSONResponse(status_code=status_code, content=payload.__dict__)


def event_error_response(request: Request, exc: EventError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        details=exc.details,
    )


def get_lead_event_service() -> LeadEventService:
    settings = get_settings()
    return LeadEventService(AuditEventStore(settings.event_source), settings.event_list_limit)


def get_ticket_event_service() -> TicketEventService:
    settings = get_settings()
    return TicketEventService(AuditEventStore(settings.event_source), settings.event_list_limit)


@lru_cache
def _partner_client() -> PartnerTicketingClient:
    return PartnerTicketingClient(get_settings(), partner_token_cache)


def get_ticket_forwarder() -> TicketActionForwarder:
    return TicketActionForwarder(_partner_client())


@events_router.get("/events/actions/{entity_kind}", response_model=None)
def list_actions(
    request: Request,
    entity_kind: str,
    user: AuthUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        kind = EntityKind(entity_kind)
    except ValueError:
        return event_error_response(
            request,
            ValidationError("entity kind must be lead or ticket", field="entityKind"),
        )
    items = [
        ActionDefinitionRead(
            id=definition.id,
            label=definition.label,
            description=definition.description,
            required_fields=sorted(required.value for required in definition.required_fields),
            default_payload=dict(definition.default_payload),
            allowed_statuses=list(definition.allowed_statuses),
            disabled=definition.disabled,
        ).model_dump(by_alias=True)
        for definition in definitions_for(kind)
    ]
    return {"success": True, "items": items}


@events_router.post("/events/lead", response_model=None)
def record_lead_event(
    request: Request,
    body: Any = Body(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
    service: LeadEventService = Depends(get_lead_event_service),
) -> dict[str, Any] | JSONResponse:
    try:
        event = service.record(db, user, body)
    except EventError as exc:
        return event_error_response(request, exc)
    return {"success": True, "event": event.model_dump(by_alias=True, mode="json")}


@events_router.post("/events/ticket", response_model=None)
def record_ticket_event(
    request: Request,
    body: Any = Body(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
    service: TicketEventService = Depends(get_ticket_event_service),
    forwarder: TicketActionForwarder = Depends(get_ticket_forwarder),
) -> dict[str, Any] | JSONResponse:
    try:
        event = service.record(db, user, body, forwarder)
    except EventError as exc:
        return event_error_response(request, exc)
    return {"success": True, "event": event.model_dump(by_alias=True, mode="json")}


@events_router.get("/leads/{lead_id}/events", response_model=None)
def list_lead_events(
    request: Request,
    lead_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
    service: LeadEventService = Depends(get_lead_event_service),
) -> dict[str, Any] | JSONResponse:
    try:
        items = service.timeline(db, lead_id)
    except EventError as exc:
        return event_error_response(request, exc)
    return {"success": True, "items": [item.model_dump(by_alias=True, mode="json") for item in items]}


@events_router.get("/tickets/{ticket_id}/events", response_model=None)
def list_ticket_events(
    request: Request,
    ticket_id: str,
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
    service: TicketEventService = Depends(get_ticket_event_service),
) -> dict[str, Any] | JSONResponse:
    try:
        items = service.timeline(db, ticket_id)
    except EventError as exc:
        return event_error_response(request, exc)
    return {"success": True, "items": [item.model_dump(by_alias=True, mode="json") for item in items]}


@events_router.patch("/lead-service-orders/{order_id}", response_model=None)
def update_service_order(
    request: Request,
    order_id: int = Path(gt=0, le=MAX_ROW_ID),
    body: Any = Body(None),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, Any] | JSONResponse:
    try:
        order = service_order_service.update(db, order_id, body)
    except EventError as exc:
        return event_error_response(request, exc)
    return {"success": True, "serviceOrder": order.model_dump(by_alias=True, mode="json")}


def _activity_metrics(
    db: Session,
    entity_kind: EntityKind,
    metrics_range: str | None,
    include_users: bool,
) -> dict[str, Any]:
    summary = activity_metrics_service.summarize(
        db,
        entity_kind,
        coerce_range(metrics_range),
        include_users=include_users,
    )
    return {
        "success": True,
        "range": summary["range"],
        "items": [item.model_dump() for item in summary["items"]],
        "daily": [item.model_dump() for item in summary["daily"]],
        "users": [item.model_dump() for item in summary["users"]],
    }


@metrics_router.get("/leads")
def lead_activity_metrics(
    metrics_range: str | None = Query(default=None, alias="range"),
    include_users: bool = Query(default=True, alias="includeUsers"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, Any]:
    return _activity_metrics(db, EntityKind.LEAD, metrics_range, include_users)


@metrics_router.get("/tickets")
def ticket_activity_metrics(
    metrics_range: str | None = Query(default=None, alias="range"),
    include_users: bool = Query(default=True, alias="includeUsers"),
    db: Session = Depends(get_db),
    user: AuthUser = Depends(get_current_user),
) -> dict[str, Any]:
    return _activity_metrics(db, EntityKind.TICKET, metrics_range, include_users)

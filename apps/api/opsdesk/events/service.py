from __future__ import annotations

import logging
from typing import Any

from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from opsdesk.context import get_correlation_id
from opsdesk.core.auth import AuthUser
from opsdesk.events import commands
from opsdesk.events.catalog import EntityKind
from opsdesk.events.errors import AuthorizationError, NotFoundError, PersistenceError, UpstreamError, ValidationError
from opsdesk.events.forwarder import TicketActionForwarder
from opsdesk.events.models import Lead, ServiceOrder, Ticket, utcnow
from opsdesk.events.payload import MAX_NOTE_CHARS, PAYLOAD_ALIASES, normalize_text, parse_money
from opsdesk.events.schemas import LeadEventRead, ServiceOrderRead, TicketEventRead
from opsdesk.events.store import AuditEventStore
from opsdesk.events.transitions import plan_lead_transition
from opsdesk.events.validator import parse_lead_id, parse_ticket_id, validate_lead_event, validate_ticket_event
from opsdesk.metrics import observe_event_recorded, observe_event_rejected, observe_service_order_created

logger = logging.getLogger("opsdesk.events")
tracer = trace.get_tracer("opsdesk.events.service")

TICKET_STATUS_BY_ACTION = {
    "close": "fechado",
    "reopen": "aberto",
    "assign": "atribuido",
}


def _log_rejected(entity_kind: EntityKind, exc: ValidationError) -> None:
    observe_event_rejected(entity_kind.value, "validation")
    logger.info(
        "event.rejected",
        extra={"entity_kind": entity_kind.value, "reason": exc.message},
    )


class LeadEventService:
    def __init__(self, store: AuditEventStore | None = None, list_limit: int = 50) -> None:
        self.store = store or AuditEventStore()
        self.list_limit = list_limit

    def record(self, session: Session, actor: AuthUser, body: Any) -> LeadEventRead:
        try:
            command = validate_lead_event(body)
        except ValidationError as exc:
            _log_rejected(EntityKind.LEAD, exc)
            raise

        lead = session.get(Lead, command.lead_id)
        if lead is None:
            observe_event_rejected(EntityKind.LEAD.value, "not_found")
            raise NotFoundError("lead not found", details={"leadId": command.lead_id})

        try:
            transition = plan_lead_transition(command, lead, actor)
        except AuthorizationError:
            observe_event_rejected(EntityKind.LEAD.value, "forbidden")
            logger.warning(
                "event.forbidden",
                extra={
                    "entity_kind": EntityKind.LEAD.value,
                    "entity_id": command.lead_id,
                    "action": command.action,
                    "actor_id": actor.sub,
                },
            )
            raise

        with tracer.start_as_current_span("events.record_lead") as span:
            span.set_attribute("correlation_id", get_correlation_id() or "")
            span.set_attribute("lead_id", command.lead_id)
            span.set_attribute("action", command.action)
            service_order_id: int | None = None
            try:
                if transition.service_order is not None:
                    draft = transition.service_order
                    order = ServiceOrder(
                        lead_id=draft.lead_id,
                        os_number=draft.os_number,
                        parts_value=draft.parts_value,
                        labor_value=draft.labor_value,
                        note=draft.note,
                    )
                    session.add(order)
                    session.flush()
                    service_order_id = order.id

                if transition.status is not None:
                    lead.status = transition.status
                if transition.owner is not None:
                    lead.consultor = transition.owner
                if transition.status is not None or transition.owner is not None:
                    lead.updated_at = utcnow()

                event = self.store.build(
                    EntityKind.LEAD,
                    command.lead_id,
                    command.action,
                    actor,
                    transition.finalize_payload(service_order_id),
                )
                self.store.append(session, event)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                observe_event_rejected(EntityKind.LEAD.value, "persistence")
                logger.error(
                    "event.persist_failed",
                    extra={
                        "entity_kind": EntityKind.LEAD.value,
                        "entity_id": command.lead_id,
                        "action": command.action,
                        "error": type(exc).__name__,
                    },
                )
                raise PersistenceError("failed to record lead event", details={"leadId": command.lead_id}) from exc

        observe_event_recorded(EntityKind.LEAD.value, command.action)
        if service_order_id is not None:
            observe_service_order_created()
        logger.info(
            "event.recorded",
            extra={
                "entity_kind": EntityKind.LEAD.value,
                "entity_id": command.lead_id,
                "action": command.action,
                "actor_id": actor.sub,
                "service_order_id": service_order_id,
            },
        )
        return LeadEventRead.model_validate(event)

    def timeline(self, session: Session, raw_lead_id: Any) -> list[LeadEventRead]:
        lead_id = parse_lead_id(raw_lead_id)
        return self.store.timeline(session, EntityKind.LEAD, lead_id, self.list_limit)  # type: ignore[return-value]


class TicketEventService:
    def __init__(self, store: AuditEventStore | None = None, list_limit: int = 50) -> None:
        self.store = store or AuditEventStore()
        self.list_limit = list_limit

    def record(
        self,
        session: Session,
        actor: AuthUser,
        body: Any,
        forwarder: TicketActionForwarder,
    ) -> TicketEventRead:
        try:
            command = validate_ticket_event(body)
        except ValidationError as exc:
            _log_rejected(EntityKind.TICKET, exc)
            raise

        ticket = session.get(Ticket, command.ticket_id)
        if ticket is None:
            observe_event_rejected(EntityKind.TICKET.value, "not_found")
            raise NotFoundError("ticket not found", details={"ticketId": command.ticket_id})

        with tracer.start_as_current_span("events.record_ticket") as span:
            span.set_attribute("correlation_id", get_correlation_id() or "")
            span.set_attribute("ticket_id", command.ticket_id)
            span.set_attribute("action", command.action)
            try:
                forwarded, _ = forwarder.forward(command)
            except UpstreamError as exc:
                observe_event_rejected(EntityKind.TICKET.value, exc.code)
                logger.warning(
                    "event.rejected",
                    extra={
                        "entity_kind": EntityKind.TICKET.value,
                        "entity_id": command.ticket_id,
                        "action": command.action,
                        "reason": exc.code,
                        "upstream_status": exc.upstream_status,
                    },
                )
                raise
            span.set_attribute("forwarded", forwarded)

            try:
                self._mirror_status(ticket, command)
                event = self.store.build(EntityKind.TICKET, command.ticket_id, command.action, actor, dict(command.payload))
                self.store.append(session, event)
                session.commit()
            except SQLAlchemyError as exc:
                session.rollback()
                observe_event_rejected(EntityKind.TICKET.value, "persistence")
                logger.error(
                    "event.persist_failed",
                    extra={
                        "entity_kind": EntityKind.TICKET.value,
                        "entity_id": command.ticket_id,
                        "action": command.action,
                        "error": type(exc).__name__,
                    },
                )
                raise PersistenceError(
                    "failed to record ticket event",
                    partial=forwarded,
                    details={"ticketId": command.ticket_id, "forwarded": forwarded},
                ) from exc

        observe_event_recorded(EntityKind.TICKET.value, command.action)
        logger.info(
            "event.recorded",
            extra={
                "entity_kind": EntityKind.TICKET.value,
                "entity_id": command.ticket_id,
                "action": command.action,
                "actor_id": actor.sub,
            },
        )
        return TicketEventRead.model_validate(event)

    @staticmethod
    def _mirror_status(ticket: Ticket, command: commands.ValidatedTicketCommand) -> None:
        status = TICKET_STATUS_BY_ACTION.get(command.action)
        if status is None:
            return
        ticket.status = status
        ticket.updated_date = utcnow()

    def timeline(self, session: Session, raw_ticket_id: Any) -> list[TicketEventRead]:
        ticket_id = parse_ticket_id(raw_ticket_id)
        return self.store.timeline(session, EntityKind.TICKET, ticket_id, self.list_limit)  # type: ignore[return-value]


class ServiceOrderService:
    def update(self, session: Session, order_id: int, body: Any) -> ServiceOrderRead:
        if not isinstance(body, dict):
            raise ValidationError("request body must be a JSON object", field="body")
        data = dict(body)
        for alias, canonical in PAYLOAD_ALIASES.items():
            if alias in data and canonical not in data:
                data[canonical] = data[alias]

        parts_value = self._money(data, "partsValue")
        labor_value = self._money(data, "laborValue")
        if parts_value is None:
            raise ValidationError("partsValue and laborValue are required", field="partsValue")
        if labor_value is None:
            raise ValidationError("partsValue and laborValue are required", field="laborValue")

        note_given = "note" in data
        note = normalize_text(data.get("note"))
        if note is not None and len(note) > MAX_NOTE_CHARS:
            raise ValidationError(f"note must be at most {MAX_NOTE_CHARS} characters", field="note")

        order = session.get(ServiceOrder, order_id)
        if order is None:
            raise NotFoundError("service order not found", details={"serviceOrderId": order_id})

        order.parts_value = parts_value
        order.labor_value = labor_value
        if note_given:
            order.note = note
        order.updated_at = utcnow()
        try:
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error("service_order.update_failed", extra={"service_order_id": order_id, "error": type(exc).__name__})
            raise PersistenceError("failed to update service order", details={"serviceOrderId": order_id}) from exc

        session.refresh(order)
        logger.info("service_order.updated", extra={"service_order_id": order_id, "entity_id": order.lead_id})
        return ServiceOrderRead.model_validate(order)

    @staticmethod
    def _money(data: dict[str, Any], key: str) -> float | None:
        try:
            return parse_money(data.get(key))
        except ValueError as exc:
            raise ValidationError(f"{key} must be a finite number >= 0", field=key) from exc

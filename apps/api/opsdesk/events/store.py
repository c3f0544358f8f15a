from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from opsdesk.core.auth import AuthUser
from opsdesk.events.catalog import EntityKind
from opsdesk.events.models import LeadEvent, ServiceOrder, TicketEvent
from opsdesk.events.payload import normalize_positive_int
from opsdesk.events.schemas import LeadEventRead, TicketEventRead

EventRow = LeadEvent | TicketEvent


class AuditEventStore:
    """Append-only persistence of validated events.

    ``append`` only flushes; committing belongs to the caller's unit of work so a
    lead's status change and its event land in the same transaction.
    """

    def __init__(self, source: str = "middleware") -> None:
        self.source = source

    def build(
        self,
        entity_kind: EntityKind,
        entity_id: int | str,
        action: str,
        actor: AuthUser,
        payload: dict[str, Any],
    ) -> EventRow:
        common = {
            "actor_user_id": actor.sub,
            "actor_email": actor.email or None,
            "actor_name": actor.name or None,
            "action": action,
            "source": self.source,
            "payload": payload,
        }
        if entity_kind is EntityKind.LEAD:
            return LeadEvent(lead_id=int(entity_id), **common)
        return TicketEvent(ticket_id=str(entity_id), **common)

    def append(self, session: Session, event: EventRow) -> EventRow:
        session.add(event)
        session.flush()
        return event

    def list_by_entity(
        self,
        session: Session,
        entity_kind: EntityKind,
        entity_id: int | str,
        limit: int = 50,
    ) -> list[EventRow]:
        if entity_kind is EntityKind.LEAD:
            stmt = select(LeadEvent).where(LeadEvent.lead_id == int(entity_id))
            stmt = stmt.order_by(LeadEvent.occurred_at.desc(), LeadEvent.id.desc())
        else:
            stmt = select(TicketEvent).where(TicketEvent.ticket_id == str(entity_id))
            stmt = stmt.order_by(TicketEvent.occurred_at.desc(), TicketEvent.id.desc())
        return list(session.scalars(stmt.limit(limit)).all())

    def timeline(
        self,
        session: Session,
        entity_kind: EntityKind,
        entity_id: int | str,
        limit: int = 50,
    ) -> list[LeadEventRead] | list[TicketEventRead]:
        rows = self.list_by_entity(session, entity_kind, entity_id, limit)
        if entity_kind is EntityKind.TICKET:
            return [TicketEventRead.model_validate(row) for row in rows]

        items = [LeadEventRead.model_validate(row) for row in rows]
        return self.attach_service_orders(session, items)

    def attach_service_orders(self, session: Session, items: list[LeadEventRead]) -> list[LeadEventRead]:
        """Re-attach the current service order values to events that link one.

        The stored payload is never touched; enrichment only affects the returned copies.
        """
        linked: set[int] = set()
        for item in items:
            order_id = normalize_positive_int(item.payload.get("serviceOrderId"))
            if order_id is not None:
                linked.add(order_id)
        if not linked:
            return items

        orders = {
            order.id: order
            for order in session.scalars(select(ServiceOrder).where(ServiceOrder.id.in_(linked))).all()
        }
        enriched: list[LeadEventRead] = []
        for item in items:
            order = orders.get(normalize_positive_int(item.payload.get("serviceOrderId")) or 0)
            if order is None:
                enriched.append(item)
                continue
            payload = {
                **item.payload,
                "os": order.os_number,
                "partsValue": float(order.parts_value),
                "laborValue": float(order.labor_value),
            }
            if order.note:
                payload["note"] = order.note
            enriched.append(item.model_copy(update={"payload": payload}))
        return enriched

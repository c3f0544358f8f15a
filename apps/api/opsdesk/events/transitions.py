"""Lead state machine.

``plan_lead_transition`` is pure: it decides the status mutation, the dependent
service order (``close_with_os`` only) and the payload to persist on the audit
event. Executing the writes is the job of ``LeadEventService``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from opsdesk.core.auth import AuthUser
from opsdesk.events import commands
from opsdesk.events.errors import AuthorizationError
from opsdesk.events.models import Lead

# moved onto the service order, never kept on the event
SERVICE_ORDER_PAYLOAD_KEYS = ("os", "partsValue", "laborValue", "note")


@dataclass(frozen=True, slots=True)
class ServiceOrderDraft:
    lead_id: int
    os_number: str
    parts_value: float
    labor_value: float
    note: str | None


@dataclass(frozen=True, slots=True)
class LeadTransition:
    status: str | None
    owner: str | None
    service_order: ServiceOrderDraft | None
    event_payload: dict[str, Any]

    def finalize_payload(self, service_order_id: int | None) -> dict[str, Any]:
        if service_order_id is None:
            return dict(self.event_payload)
        return {**self.event_payload, "serviceOrderId": service_order_id}


def _normalize_name(value: str | None) -> str:
    return (value or "").strip().lower()


def is_lead_owner(lead: Lead, actor: AuthUser) -> bool:
    owner = _normalize_name(lead.consultor)
    return bool(owner) and owner == _normalize_name(actor.name)


def plan_lead_transition(command: commands.ValidatedLeadCommand, lead: Lead, actor: AuthUser) -> LeadTransition:
    payload = dict(command.payload)

    if isinstance(command, commands.AssignLead):
        return LeadTransition(status="atribuido", owner=command.assignee, service_order=None, event_payload=payload)

    if isinstance(command, commands.RegisterContact):
        if not is_lead_owner(lead, actor):
            raise AuthorizationError(
                "only the consultant assigned to this lead can register a contact",
                details={"leadId": command.lead_id},
            )
        return LeadTransition(status="em_contato", owner=None, service_order=None, event_payload=payload)

    if isinstance(command, commands.DiscardLead):
        return LeadTransition(status="descartado", owner=None, service_order=None, event_payload=payload)

    if isinstance(command, commands.CloseLeadWithoutOs):
        return LeadTransition(status="fechado_sem_os", owner=None, service_order=None, event_payload=payload)

    if isinstance(command, commands.CloseLeadWithOs):
        draft = ServiceOrderDraft(
            lead_id=command.lead_id,
            os_number=command.os_number,
            parts_value=command.parts_value,
            labor_value=command.labor_value,
            note=command.note,
        )
        for key in SERVICE_ORDER_PAYLOAD_KEYS:
            payload.pop(key, None)
        return LeadTransition(status="fechado_com_os", owner=None, service_order=draft, event_payload=payload)

    if isinstance(command, commands.ConvertLeadToTicket):
        return LeadTransition(status=None, owner=None, service_order=None, event_payload=payload)

    raise TypeError(f"unsupported lead command: {type(command).__name__}")

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union


@dataclass(frozen=True, slots=True)
class LeadCommand:
    lead_id: int
    payload: dict[str, Any]

    action = ""


@dataclass(frozen=True, slots=True)
class AssignLead(LeadCommand):
    assignee: str

    action = "assign"


@dataclass(frozen=True, slots=True)
class RegisterContact(LeadCommand):
    note: str

    action = "register_contact"


@dataclass(frozen=True, slots=True)
class DiscardLead(LeadCommand):
    reason: str

    action = "discard"


@dataclass(frozen=True, slots=True)
class CloseLeadWithoutOs(LeadCommand):
    reason: str

    action = "close_without_os"


@dataclass(frozen=True, slots=True)
class CloseLeadWithOs(LeadCommand):
    os_number: str
    parts_value: float
    labor_value: float
    note: str | None

    action = "close_with_os"


@dataclass(frozen=True, slots=True)
class ConvertLeadToTicket(LeadCommand):
    method: str | None

    action = "convert_to_ticket"


@dataclass(frozen=True, slots=True)
class TicketCommand:
    ticket_id: str
    payload: dict[str, Any]

    action = ""


@dataclass(frozen=True, slots=True)
class ViewTicket(TicketCommand):
    action = "view"


@dataclass(frozen=True, slots=True)
class AddTicketNote(TicketCommand):
    action = "add_note"


@dataclass(frozen=True, slots=True)
class AddTicketTags(TicketCommand):
    tags: list[str]

    action = "add_tags"


@dataclass(frozen=True, slots=True)
class RemoveTicketTags(TicketCommand):
    tags: list[str]

    action = "remove_tags"


@dataclass(frozen=True, slots=True)
class CloseTicket(TicketCommand):
    action = "close"


@dataclass(frozen=True, slots=True)
class ReopenTicket(TicketCommand):
    action = "reopen"


@dataclass(frozen=True, slots=True)
class AssignTicket(TicketCommand):
    assignee: str

    action = "assign"


@dataclass(frozen=True, slots=True)
class UpdateTicketFields(TicketCommand):
    changed_fields: dict[str, str]

    action = "update_field"


@dataclass(frozen=True, slots=True)
class ExternalUpdateDetected(TicketCommand):
    action = "external_update_detected"


ValidatedLeadCommand = Union[
    AssignLead,
    RegisterContact,
    DiscardLead,
    CloseLeadWithoutOs,
    CloseLeadWithOs,
    ConvertLeadToTicket,
]

ValidatedTicketCommand = Union[
    ViewTicket,
    AddTicketNote,
    AddTicketTags,
    RemoveTicketTags,
    CloseTicket,
    ReopenTicket,
    AssignTicket,
    UpdateTicketFields,
    ExternalUpdateDetected,
]

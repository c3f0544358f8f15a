"""Turns raw ``{entityId, action, payload}`` submissions into typed commands.

Validation is pure and deterministic: it never touches the store. Rules are
checked in a fixed order and the first violation is reported.
"""

from __future__ import annotations

import re
import uuid
from collections.abc import Callable
from typing import Any

from opsdesk.events import commands
from opsdesk.events.catalog import ActionDefinition, EntityKind, RequiredField, find_definition
from opsdesk.events.errors import ValidationError
from opsdesk.events.payload import normalize_payload

_UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$", re.IGNORECASE)

# assigned by the transition handler, never by the caller
_SERVER_ONLY_KEYS = ("serviceOrderId",)

# BIGINT primary keys
MAX_ROW_ID = 2**63 - 1


def parse_lead_id(raw: Any) -> int:
    lead_id: int | None = None
    if isinstance(raw, bool):
        lead_id = None
    elif isinstance(raw, int):
        lead_id = raw
    elif isinstance(raw, float) and raw.is_integer():
        lead_id = int(raw)
    elif isinstance(raw, str) and raw.strip():
        text = raw.strip()
        try:
            lead_id = int(text)
        except ValueError:
            try:
                as_float = float(text)
            except ValueError:
                as_float = None
            if as_float is not None and as_float.is_integer():
                lead_id = int(as_float)
    if lead_id is None or lead_id <= 0 or lead_id > MAX_ROW_ID:
        raise ValidationError("leadId must be a positive integer", field="leadId")
    return lead_id


def parse_ticket_id(raw: Any) -> str:
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("ticketId is required", field="ticketId")
    text = raw.strip()
    if not _UUID_RE.match(text):
        raise ValidationError("ticketId must be a UUID", field="ticketId")
    return str(uuid.UUID(text))


def _require(payload: dict[str, Any], key: str, message: str, field: str | None = None) -> Any:
    value = payload.get(key)
    if value is None or value == "" or value == [] or value == {}:
        raise ValidationError(message, field=field or key)
    return value


def _check_required(definition: ActionDefinition, payload: dict[str, Any]) -> None:
    action = definition.id
    for flag in sorted(definition.required_fields, key=lambda item: item.value):
        if flag is RequiredField.NOTE:
            _require(payload, "note", f"note is required for {action}")
        elif flag is RequiredField.REASON:
            _require(payload, "reason", f"reason required for {action}")
        elif flag is RequiredField.TAGS:
            _require(payload, "tags", f"tags required for {action}")
        elif flag is RequiredField.ASSIGNEE:
            _require(payload, "assignee", f"assignee required for {action}")
        elif flag is RequiredField.CHANGED_FIELDS:
            _require(payload, "changedFields", f"changedFields required for {action}")
        elif flag is RequiredField.SERVICE_ORDER:
            for key in ("os", "partsValue", "laborValue"):
                _require(payload, key, f"os and value required for {action}", field=key)


def _lead_command(action: str, lead_id: int, payload: dict[str, Any]) -> commands.ValidatedLeadCommand:
    if action == "assign":
        return commands.AssignLead(lead_id=lead_id, payload=payload, assignee=payload["assignee"])
    if action == "register_contact":
        return commands.RegisterContact(lead_id=lead_id, payload=payload, note=payload["note"])
    if action == "discard":
        return commands.DiscardLead(lead_id=lead_id, payload=payload, reason=payload["reason"])
    if action == "close_without_os":
        return commands.CloseLeadWithoutOs(lead_id=lead_id, payload=payload, reason=payload["reason"])
    if action == "close_with_os":
        return commands.CloseLeadWithOs(
            lead_id=lead_id,
            payload=payload,
            os_number=payload["os"],
            parts_value=payload["partsValue"],
            labor_value=payload["laborValue"],
            note=payload.get("note"),
        )
    if action == "convert_to_ticket":
        return commands.ConvertLeadToTicket(lead_id=lead_id, payload=payload, method=payload.get("method"))
    raise ValidationError(f"action not allowed for lead: {action}", field="action")


_TICKET_COMMANDS: dict[str, Callable[[str, dict[str, Any]], commands.ValidatedTicketCommand]] = {
    "view": lambda ticket_id, payload: commands.ViewTicket(ticket_id=ticket_id, payload=payload),
    "add_note": lambda ticket_id, payload: commands.AddTicketNote(ticket_id=ticket_id, payload=payload),
    "add_tags": lambda ticket_id, payload: commands.AddTicketTags(
        ticket_id=ticket_id, payload=payload, tags=payload["tags"]
    ),
    "remove_tags": lambda ticket_id, payload: commands.RemoveTicketTags(
        ticket_id=ticket_id, payload=payload, tags=payload["tags"]
    ),
    "close": lambda ticket_id, payload: commands.CloseTicket(ticket_id=ticket_id, payload=payload),
    "reopen": lambda ticket_id, payload: commands.ReopenTicket(ticket_id=ticket_id, payload=payload),
    "assign": lambda ticket_id, payload: commands.AssignTicket(
        ticket_id=ticket_id, payload=payload, assignee=payload["assignee"]
    ),
    "update_field": lambda ticket_id, payload: commands.UpdateTicketFields(
        ticket_id=ticket_id, payload=payload, changed_fields=payload["changedFields"]
    ),
    "external_update_detected": lambda ticket_id, payload: commands.ExternalUpdateDetected(
        ticket_id=ticket_id, payload=payload
    ),
}


def validate(
    entity_kind: EntityKind | str,
    raw_entity_id: Any,
    raw_action: Any,
    raw_payload: Any,
) -> commands.ValidatedLeadCommand | commands.ValidatedTicketCommand:
    kind = EntityKind(entity_kind)

    if not isinstance(raw_action, str):
        raise ValidationError("action is required", field="action")
    action = raw_action.strip()
    definition = find_definition(kind, action)
    if definition is None:
        raise ValidationError(f"action not allowed for {kind.value}", field="action", details={"action": action})

    merged = {**definition.default_payload, **(raw_payload if isinstance(raw_payload, dict) else {})}
    payload = normalize_payload(merged)
    for key in _SERVER_ONLY_KEYS:
        payload.pop(key, None)

    if kind is EntityKind.LEAD:
        lead_id = parse_lead_id(raw_entity_id)
        _check_required(definition, payload)
        return _lead_command(action, lead_id, payload)

    ticket_id = parse_ticket_id(raw_entity_id)
    _check_required(definition, payload)
    return _TICKET_COMMANDS[action](ticket_id, payload)


def _require_object(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("request body must be a JSON object", field="body")
    return body


def validate_lead_event(body: Any) -> commands.ValidatedLeadCommand:
    data = _require_object(body)
    command = validate(EntityKind.LEAD, data.get("leadId"), data.get("action"), data.get("payload"))
    return command  # type: ignore[return-value]


def validate_ticket_event(body: Any) -> commands.ValidatedTicketCommand:
    data = _require_object(body)
    command = validate(EntityKind.TICKET, data.get("ticketId"), data.get("action"), data.get("payload"))
    return command  # type: ignore[return-value]

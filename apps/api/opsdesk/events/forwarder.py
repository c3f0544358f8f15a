from __future__ import annotations

from typing import Any, Protocol

from opsdesk.events import commands

AUDIT_ONLY_ACTIONS = frozenset({"view", "add_note", "assign", "external_update_detected"})
FIELD_UPDATE_KEYS = ("resolution", "description")


class PartnerTicketingAdapter(Protocol):
    def add_tags(self, ticket_id: str, tags: list[str]) -> Any: ...

    def remove_tags(self, ticket_id: str, tags: list[str]) -> Any: ...

    def close_ticket(self, ticket_id: str, resolution: str | None = None) -> Any: ...

    def update_ticket(self, ticket_id: str, fields: dict[str, str]) -> Any: ...


def _field_updates(payload: dict[str, Any]) -> dict[str, str]:
    updates: dict[str, str] = {}
    for key in FIELD_UPDATE_KEYS:
        value = payload.get(key)
        if isinstance(value, str) and value.strip():
            updates[key] = value.strip()
    return updates


class TicketActionForwarder:
    """Propagates ticket actions that change state in the partner system.

    ``forward`` returns ``(forwarded, upstream_result)``. Audit-only actions are
    never sent upstream. Partner failures surface as ``UpstreamError`` and are not
    retried here.
    """

    def __init__(self, adapter: PartnerTicketingAdapter) -> None:
        self.adapter = adapter

    def should_forward(self, command: commands.ValidatedTicketCommand) -> bool:
        if command.action in AUDIT_ONLY_ACTIONS:
            return False
        if isinstance(command, (commands.AddTicketTags, commands.RemoveTicketTags)):
            return True
        if isinstance(command, (commands.CloseTicket, commands.UpdateTicketFields)):
            return True
        return bool(_field_updates(command.payload))

    def forward(self, command: commands.ValidatedTicketCommand) -> tuple[bool, Any]:
        if not self.should_forward(command):
            return False, None

        ticket_id = command.ticket_id
        if isinstance(command, commands.AddTicketTags):
            return True, self.adapter.add_tags(ticket_id, command.tags)
        if isinstance(command, commands.RemoveTicketTags):
            return True, self.adapter.remove_tags(ticket_id, command.tags)
        if isinstance(command, commands.CloseTicket):
            return True, self.adapter.close_ticket(ticket_id, _field_updates(command.payload).get("resolution"))
        if isinstance(command, commands.UpdateTicketFields):
            return True, self.adapter.update_ticket(ticket_id, {**command.changed_fields, **_field_updates(command.payload)})
        return True, self.adapter.update_ticket(ticket_id, _field_updates(command.payload))

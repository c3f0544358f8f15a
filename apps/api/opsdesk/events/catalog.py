from __future__ import annotations

import enum
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping


class EntityKind(str, enum.Enum):
    LEAD = "lead"
    TICKET = "ticket"


class RequiredField(str, enum.Enum):
    NOTE = "note"
    REASON = "reason"
    TAGS = "tags"
    ASSIGNEE = "assignee"
    SERVICE_ORDER = "service_order"
    CHANGED_FIELDS = "changedFields"


@dataclass(frozen=True, slots=True)
class ActionDefinition:
    id: str
    label: str
    description: str
    required_fields: frozenset[RequiredField] = frozenset()
    default_payload: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    # advisory for UIs only; the engine accepts actions in any status
    allowed_statuses: tuple[str, ...] = ("*",)
    disabled: bool = False


LEAD_ACTIONS: tuple[ActionDefinition, ...] = (
    ActionDefinition(
        id="register_contact",
        label="Registrar contato",
        description="{actor} realizou um contato com o cliente.",
        required_fields=frozenset({RequiredField.NOTE}),
        allowed_statuses=("atribuido", "em_contato"),
    ),
    ActionDefinition(
        id="assign",
        label="Atribuir",
        description="{actor} atribuiu esse lead.",
        required_fields=frozenset({RequiredField.ASSIGNEE}),
        allowed_statuses=("novo", "atribuido"),
    ),
    ActionDefinition(
        id="discard",
        label="Descartar",
        description="{actor} descartou esse lead.",
        required_fields=frozenset({RequiredField.REASON}),
        allowed_statuses=("novo",),
    ),
    ActionDefinition(
        id="close_without_os",
        label="Fechar (sem OS)",
        description="{actor} fechou esse lead sem OS.",
        required_fields=frozenset({RequiredField.REASON}),
        allowed_statuses=("atribuido", "em_contato"),
    ),
    ActionDefinition(
        id="close_with_os",
        label="Fechar (com OS)",
        description="{actor} fechou esse lead com a OS {os}.",
        required_fields=frozenset({RequiredField.SERVICE_ORDER}),
        allowed_statuses=("atribuido", "em_contato"),
    ),
    ActionDefinition(
        id="convert_to_ticket",
        label="Converter em ticket",
        description="{actor} marcou esse lead para conversao em ticket.",
        default_payload=MappingProxyType({"method": "manual"}),
        disabled=True,
    ),
)

TICKET_ACTIONS: tuple[ActionDefinition, ...] = (
    ActionDefinition(id="view", label="Visualizar", description="Marca que você visualizou/avaliou o ticket."),
    ActionDefinition(id="add_note", label="Adicionar nota", description="Registra uma observação interna."),
    ActionDefinition(
        id="add_tags",
        label="Adicionar tags",
        description="Adiciona tags ao ticket (exige pelo menos 1 tag).",
        required_fields=frozenset({RequiredField.TAGS}),
    ),
    ActionDefinition(
        id="remove_tags",
        label="Remover tags",
        description="Remove tags do ticket (exige pelo menos 1 tag).",
        required_fields=frozenset({RequiredField.TAGS}),
    ),
    ActionDefinition(id="close", label="Fechar", description="Registra fechamento do ticket."),
    ActionDefinition(id="reopen", label="Reabrir", description="Registra reabertura do ticket."),
    ActionDefinition(
        id="assign",
        label="Atribuir",
        description="Atribui o ticket a um responsável.",
        required_fields=frozenset({RequiredField.ASSIGNEE}),
    ),
    ActionDefinition(
        id="update_field",
        label="Atualizar campos",
        description="Atualiza campos do ticket no sistema parceiro.",
        required_fields=frozenset({RequiredField.CHANGED_FIELDS}),
    ),
    ActionDefinition(
        id="external_update_detected",
        label="Atualização externa detectada",
        description="Marca que houve mudança fora do middleware.",
    ),
)

_CATALOGS: dict[EntityKind, tuple[ActionDefinition, ...]] = {
    EntityKind.LEAD: LEAD_ACTIONS,
    EntityKind.TICKET: TICKET_ACTIONS,
}


def definitions_for(entity_kind: EntityKind | str) -> tuple[ActionDefinition, ...]:
    return _CATALOGS[EntityKind(entity_kind)]


def find_definition(entity_kind: EntityKind | str, action: str) -> ActionDefinition | None:
    for definition in definitions_for(entity_kind):
        if definition.id == action:
            return definition
    return None

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


MetricsRange = Literal["today", "week", "month", "all"]


class CamelModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, alias_generator=to_camel, populate_by_name=True)


class LeadEventRead(CamelModel):
    id: int
    lead_id: int
    actor_user_id: str
    actor_email: str | None
    actor_name: str | None
    action: str
    source: str
    occurred_at: datetime
    payload: dict[str, Any]


class TicketEventRead(CamelModel):
    id: int
    ticket_id: str
    actor_user_id: str
    actor_email: str | None
    actor_name: str | None
    action: str
    source: str
    occurred_at: datetime
    payload: dict[str, Any]


class ServiceOrderRead(CamelModel):
    id: int
    lead_id: int
    os_number: str
    parts_value: float
    labor_value: float
    note: str | None
    created_at: datetime
    updated_at: datetime


class ActionDefinitionRead(CamelModel):
    id: str
    label: str
    description: str
    required_fields: list[str]
    default_payload: dict[str, Any]
    allowed_statuses: list[str]
    disabled: bool


class UserActionMetrics(BaseModel):
    actor_user_id: str
    actor_email: str
    actor_name: str
    total_actions: int
    unique_items: int
    actions_breakdown: dict[str, int] = Field(default_factory=dict)


class DailyActionMetrics(BaseModel):
    actor_user_id: str
    date: str
    total_actions: int


class KnownActor(BaseModel):
    id: str
    name: str | None = None
    email: str | None = None

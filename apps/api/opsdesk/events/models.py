from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, event
from sqlalchemy.orm import Mapped, mapped_column

from opsdesk.core.database import Base

# BIGINT primary keys only autoincrement on SQLite when declared as INTEGER
BigIntId = BigInteger().with_variant(Integer(), "sqlite")

LEAD_STATUSES = ("novo", "atribuido", "em_contato", "descartado", "fechado_sem_os", "fechado_com_os")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="novo", server_default="novo")
    consultor: Mapped[str | None] = mapped_column(Text, nullable=True)
    empresa: Mapped[str | None] = mapped_column(Text, nullable=True)
    nome_contato: Mapped[str | None] = mapped_column(Text, nullable=True)
    telefone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class Ticket(Base):
    """Local mirror of a partner ticket, used for listing and metrics."""

    __tablename__ = "tickets"

    ticket_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    external_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="aberto", server_default="aberto")
    empresa: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)


class ServiceOrder(Base):
    __tablename__ = "lead_service_orders"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    lead_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("leads.id", ondelete="RESTRICT"), nullable=False)
    os_number: Mapped[str] = mapped_column(String(128), nullable=False)
    parts_value: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    labor_value: Mapped[float] = mapped_column(Numeric(14, 2, asdecimal=False), nullable=False, default=0)
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (Index("ix_lead_service_orders_lead", "lead_id"),)


class LeadEvent(Base):
    __tablename__ = "lead_events"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    lead_id: Mapped[int] = mapped_column(BigIntId, ForeignKey("leads.id", ondelete="RESTRICT"), nullable=False)
    actor_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_lead_events_lead_occurred", "lead_id", "occurred_at"),
        Index("ix_lead_events_occurred", "occurred_at"),
    )


class TicketEvent(Base):
    __tablename__ = "ticket_events"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True, autoincrement=True)
    ticket_id: Mapped[str] = mapped_column(String(36), nullable=False)
    actor_user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    actor_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    actor_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_ticket_events_ticket_occurred", "ticket_id", "occurred_at"),
        Index("ix_ticket_events_occurred", "occurred_at"),
    )


class ImmutableEventError(RuntimeError):
    pass


def _forbid_mutation(mapper, connection, target) -> None:  # type: ignore[no-untyped-def]
    raise ImmutableEventError(f"{type(target).__name__} rows are append-only")


for _event_model in (LeadEvent, TicketEvent):
    event.listen(_event_model, "before_update", _forbid_mutation)
    event.listen(_event_model, "before_delete", _forbid_mutation)

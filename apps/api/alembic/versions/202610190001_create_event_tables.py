"""create lead, ticket and audit event tables

Revision ID: 202610190001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa


revision: str = "202610190001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def _event_actor_columns() -> list[sa.Column]:
    return [
        sa.Column("actor_user_id", sa.String(length=128), nullable=False),
        sa.Column("actor_email", sa.String(length=320), nullable=True),
        sa.Column("actor_name", sa.String(length=255), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("source", sa.String(length=64), nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "leads",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="novo"),
        sa.Column("consultor", sa.Text(), nullable=True),
        sa.Column("empresa", sa.Text(), nullable=True),
        sa.Column("nome_contato", sa.Text(), nullable=True),
        sa.Column("telefone", sa.String(length=64), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "tickets",
        sa.Column("ticket_id", sa.String(length=36), nullable=False),
        sa.Column("external_id", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="aberto"),
        sa.Column("empresa", sa.Text(), nullable=True),
        sa.Column("updated_date", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("ticket_id"),
    )

    op.create_table(
        "lead_service_orders",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("lead_id", sa.BigInteger(), nullable=False),
        sa.Column("os_number", sa.String(length=128), nullable=False),
        sa.Column("parts_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("labor_value", sa.Numeric(14, 2), nullable=False),
        sa.Column("note", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lead_service_orders_lead", "lead_service_orders", ["lead_id"])

    op.create_table(
        "lead_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("lead_id", sa.BigInteger(), nullable=False),
        *_event_actor_columns(),
        sa.ForeignKeyConstraint(["lead_id"], ["leads.id"], ondelete="RESTRICT"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_lead_events_lead_occurred", "lead_events", ["lead_id", "occurred_at"])
    op.create_index("ix_lead_events_occurred", "lead_events", ["occurred_at"])

    op.create_table(
        "ticket_events",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("ticket_id", sa.String(length=36), nullable=False),
        *_event_actor_columns(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ticket_events_ticket_occurred", "ticket_events", ["ticket_id", "occurred_at"])
    op.create_index("ix_ticket_events_occurred", "ticket_events", ["occurred_at"])


def downgrade() -> None:
    op.drop_index("ix_ticket_events_occurred", table_name="ticket_events")
    op.drop_index("ix_ticket_events_ticket_occurred", table_name="ticket_events")
    op.drop_table("ticket_events")
    op.drop_index("ix_lead_events_occurred", table_name="lead_events")
    op.drop_index("ix_lead_events_lead_occurred", table_name="lead_events")
    op.drop_table("lead_events")
    op.drop_index("ix_lead_service_orders_lead", table_name="lead_service_orders")
    op.drop_table("lead_service_orders")
    op.drop_table("tickets")
    op.drop_table("leads")

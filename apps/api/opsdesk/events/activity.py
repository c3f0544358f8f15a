from __future__ import annotations

from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from opsdesk.events.catalog import EntityKind
from opsdesk.events.models import LeadEvent, TicketEvent
from opsdesk.events.schemas import DailyActionMetrics, KnownActor, MetricsRange, UserActionMetrics

METRICS_RANGES: tuple[str, ...] = ("today", "week", "month", "all")
KNOWN_ACTORS_WINDOW = timedelta(days=365)


@dataclass(frozen=True, slots=True)
class ActivityRow:
    actor_user_id: str | None
    actor_email: str | None
    actor_name: str | None
    action: str | None
    item_id: str | None
    occurred_at: datetime | None


def coerce_range(value: str | None) -> MetricsRange:
    candidate = (value or "").strip()
    return candidate if candidate in METRICS_RANGES else "week"  # type: ignore[return-value]


def range_to_start(metrics_range: str, now: datetime) -> datetime | None:
    if metrics_range == "all":
        return None
    if metrics_range == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if metrics_range == "week":
        return now - timedelta(days=7)
    return now - timedelta(days=30)


@dataclass
class _UserTotals:
    actor_user_id: str
    actor_email: str
    actor_name: str
    total_actions: int = 0
    items: set[str] = field(default_factory=set)
    breakdown: dict[str, int] = field(default_factory=dict)


def aggregate_user_metrics(rows: Iterable[ActivityRow]) -> list[UserActionMetrics]:
    by_user: dict[str, _UserTotals] = {}
    for row in rows:
        actor_id = (row.actor_user_id or "").strip()
        action = (row.action or "").strip()
        if not actor_id or not action:
            continue

        current = by_user.get(actor_id)
        if current is None:
            current = _UserTotals(
                actor_user_id=actor_id,
                actor_email=(row.actor_email or "").strip(),
                actor_name=(row.actor_name or "").strip(),
            )
            by_user[actor_id] = current

        current.total_actions += 1
        current.breakdown[action] = current.breakdown.get(action, 0) + 1
        if row.item_id is not None:
            current.items.add(str(row.item_id))
        if not current.actor_email and row.actor_email:
            current.actor_email = row.actor_email.strip()
        if not current.actor_name and row.actor_name:
            current.actor_name = row.actor_name.strip()

    metrics = [
        UserActionMetrics(
            actor_user_id=item.actor_user_id,
            actor_email=item.actor_email,
            actor_name=item.actor_name,
            total_actions=item.total_actions,
            unique_items=len(item.items),
            actions_breakdown=item.breakdown,
        )
        for item in by_user.values()
    ]
    # stable: ties keep first-seen order
    return sorted(metrics, key=lambda item: -item.total_actions)


def aggregate_daily_metrics(rows: Iterable[ActivityRow]) -> list[DailyActionMetrics]:
    by_day: dict[str, dict[str, int]] = defaultdict(dict)
    for row in rows:
        actor_id = (row.actor_user_id or "").strip()
        if not actor_id or row.occurred_at is None:
            continue
        occurred_at = row.occurred_at
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        day_key = occurred_at.astimezone(timezone.utc).date().isoformat()
        by_day[day_key][actor_id] = by_day[day_key].get(actor_id, 0) + 1

    return [
        DailyActionMetrics(actor_user_id=actor_id, date=day, total_actions=total)
        for day in sorted(by_day)
        for actor_id, total in sorted(by_day[day].items())
    ]


def collect_known_actors(rows: Iterable[ActivityRow]) -> list[KnownActor]:
    actors: dict[str, KnownActor] = {}
    for row in rows:
        actor_id = (row.actor_user_id or "").strip()
        if not actor_id:
            continue
        existing = actors.get(actor_id)
        actors[actor_id] = KnownActor(
            id=actor_id,
            name=(row.actor_name or "").strip() or (existing.name if existing else None),
            email=(row.actor_email or "").strip() or (existing.email if existing else None),
        )
    return list(actors.values())


class ActivityMetricsService:
    def load_rows(self, session: Session, entity_kind: EntityKind, since: datetime | None) -> list[ActivityRow]:
        model = LeadEvent if entity_kind is EntityKind.LEAD else TicketEvent
        item_column = LeadEvent.lead_id if entity_kind is EntityKind.LEAD else TicketEvent.ticket_id
        stmt = select(
            model.actor_user_id,
            model.actor_email,
            model.actor_name,
            model.action,
            item_column,
            model.occurred_at,
        )
        if since is not None:
            stmt = stmt.where(model.occurred_at >= since)
        return [
            ActivityRow(
                actor_user_id=actor_user_id,
                actor_email=actor_email,
                actor_name=actor_name,
                action=action,
                item_id=None if item_id is None else str(item_id),
                occurred_at=occurred_at,
            )
            for actor_user_id, actor_email, actor_name, action, item_id, occurred_at in session.execute(stmt)
        ]

    def summarize(
        self,
        session: Session,
        entity_kind: EntityKind,
        metrics_range: MetricsRange,
        *,
        include_users: bool = True,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        current = now or datetime.now(timezone.utc)
        rows = self.load_rows(session, entity_kind, range_to_start(metrics_range, current))
        users: list[KnownActor] = []
        if include_users:
            users = collect_known_actors(self.load_rows(session, entity_kind, current - KNOWN_ACTORS_WINDOW))
        return {
            "range": metrics_range,
            "items": aggregate_user_metrics(rows),
            "daily": aggregate_daily_metrics(rows),
            "users": users,
        }

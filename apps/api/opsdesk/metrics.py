from __future__ import annotations

import re

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest
from starlette.requests import Request


http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)

events_recorded_total = Counter(
    "opsdesk_events_recorded_total",
    "Audit events recorded by entity kind and action",
    ["entity_kind", "action"],
)

events_rejected_total = Counter(
    "opsdesk_events_rejected_total",
    "Event submissions rejected by entity kind and reason",
    ["entity_kind", "reason"],
)

service_orders_created_total = Counter(
    "opsdesk_service_orders_created_total",
    "Service orders created by close_with_os",
)

partner_requests_total = Counter(
    "opsdesk_partner_requests_total",
    "Partner ticketing API calls by operation and outcome",
    ["operation", "outcome"],
)


_UUID_RE = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[1-5][0-9a-fA-F]{3}-[89abAB][0-9a-fA-F]{3}-[0-9a-fA-F]{12}\b"
)
_INT_RE = re.compile(r"/\d+\b")
_PATH_PARAM_RE = re.compile(r"\{[^{}]+\}")


def _sanitize_path(path: str) -> str:
    without_uuids = _UUID_RE.sub("{id}", path)
    return _INT_RE.sub("/{id}", without_uuids)


def resolve_http_path_label(request: Request) -> str:
    route = request.scope.get("route")
    if route is not None:
        route_path = getattr(route, "path_format", None) or getattr(route, "path", None)
        if isinstance(route_path, str) and route_path:
            return _PATH_PARAM_RE.sub("{id}", route_path)
    return _sanitize_path(request.url.path)


def observe_http_request(method: str, path: str, status: int, duration: float) -> None:
    http_requests_total.labels(method=method, path=path, status=str(status)).inc()
    http_request_duration_seconds.labels(method=method, path=path).observe(duration)


def observe_event_recorded(entity_kind: str, action: str) -> None:
    events_recorded_total.labels(entity_kind=entity_kind, action=action).inc()


def observe_event_rejected(entity_kind: str, reason: str) -> None:
    events_rejected_total.labels(entity_kind=entity_kind, reason=reason).inc()


def observe_service_order_created() -> None:
    service_orders_created_total.inc()


def observe_partner_request(operation: str, outcome: str) -> None:
    partner_requests_total.labels(operation=operation, outcome=outcome).inc()


def generate_metrics_payload() -> bytes:
    return generate_latest()


def metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST

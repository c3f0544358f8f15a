"""HTTP adapter for the partner ticketing API.

Authentication uses OAuth client credentials. The access token lives in an
explicit ``TokenCache`` object that callers construct once and share; a token is
treated as expired 30 seconds before the lifetime reported by the token endpoint. A
token the ticket API answers with 401 or 403 is dropped so the next call fetches
a fresh one.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx
from opentelemetry import trace

from opsdesk.context import get_correlation_id
from opsdesk.core.config import Settings
from opsdesk.events.errors import UpstreamError
from opsdesk.metrics import observe_partner_request

logger = logging.getLogger("opsdesk.partner")
tracer = trace.get_tracer("opsdesk.events.partner")

TOKEN_REFRESH_MARGIN_SECONDS = 30
DEFAULT_TOKEN_TTL_SECONDS = 300
MAX_UPSTREAM_MESSAGE_CHARS = 300


@dataclass(frozen=True, slots=True)
class CachedToken:
    access_token: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class TokenCache:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._token: CachedToken | None = None

    def current(self) -> CachedToken | None:
        with self._lock:
            return self._token

    def store(self, access_token: str, expires_in: Any, now: float) -> CachedToken:
        ttl = DEFAULT_TOKEN_TTL_SECONDS
        if isinstance(expires_in, (int, float)) and not isinstance(expires_in, bool) and expires_in > 0:
            ttl = expires_in
        token = CachedToken(access_token=access_token, expires_at=now + max(0, ttl - TOKEN_REFRESH_MARGIN_SECONDS))
        with self._lock:
            self._token = token
        return token

    def clear(self) -> None:
        with self._lock:
            self._token = None


def pick_upstream_message(payload: Any) -> str | None:
    if not isinstance(payload, dict):
        return None
    error = payload.get("error")
    candidates = [
        payload.get("message"),
        error.get("message") if isinstance(error, dict) else None,
        payload.get("error_description"),
        payload.get("title"),
    ]
    for candidate in candidates:
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()[:MAX_UPSTREAM_MESSAGE_CHARS]
    return None


def map_upstream_status(status_code: int, payload: Any, operation: str) -> UpstreamError:
    if status_code == 404:
        return UpstreamError("not_found", "Ticket not found", upstream_status=status_code)
    if status_code in (401, 403):
        return UpstreamError("upstream_auth_failed", "Partner API auth failed", upstream_status=status_code)
    message = pick_upstream_message(payload) or f"Partner API error during {operation}"
    return UpstreamError("upstream_error", message, upstream_status=status_code)


class PartnerTicketingClient:
    def __init__(
        self,
        settings: Settings,
        token_cache: TokenCache,
        *,
        http_client: httpx.Client | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.token_cache = token_cache
        self.http = http_client or httpx.Client(timeout=settings.partner_timeout_seconds)
        self.clock = clock

    def add_tags(self, ticket_id: str, tags: list[str]) -> Any:
        return self._request("add_tags", "POST", f"{self._ticket_path(ticket_id)}/tags", json={"tagIds": tags})

    def remove_tags(self, ticket_id: str, tags: list[str]) -> Any:
        return self._request("remove_tags", "DELETE", f"{self._ticket_path(ticket_id)}/tags", json={"tagIds": tags})

    def close_ticket(self, ticket_id: str, resolution: str | None = None) -> Any:
        body = {"resolution": resolution} if resolution else None
        return self._request("close", "PUT", f"{self._ticket_path(ticket_id)}/close", json=body)

    def update_ticket(self, ticket_id: str, fields: dict[str, str]) -> Any:
        return self._request("update", "PATCH", self._ticket_path(ticket_id), json=fields)

    def access_token(self) -> str:
        cached = self.token_cache.current()
        if cached is not None and not cached.is_expired(self.clock()):
            return cached.access_token

        form = {
            "grant_type": "client_credentials",
            "client_id": self.settings.partner_oauth_client_id or "",
            "client_secret": self.settings.partner_oauth_client_secret or "",
        }
        if self.settings.partner_oauth_scope:
            form["scope"] = self.settings.partner_oauth_scope

        try:
            response = self.http.post(
                self.settings.partner_oauth_token_url or "",
                data=form,
                headers={"Accept": "application/json", "Cache-Control": "no-cache"},
            )
        except httpx.HTTPError as exc:
            observe_partner_request("oauth_token", "network_error")
            logger.error("partner.token_failed", extra={"operation": "oauth_token", "error": str(exc)})
            raise UpstreamError("server_error", "Unexpected error contacting partner API") from exc

        if response.is_error:
            observe_partner_request("oauth_token", "auth_failed")
            logger.warning(
                "partner.token_rejected",
                extra={"operation": "oauth_token", "upstream_status": response.status_code, "error": response.text[:300]},
            )
            raise UpstreamError("upstream_auth_failed", "Partner API auth failed", upstream_status=response.status_code)

        try:
            token_json = response.json()
        except ValueError as exc:
            observe_partner_request("oauth_token", "parse_error")
            raise UpstreamError("server_error", "Unexpected partner token response") from exc

        access_token = token_json.get("access_token") if isinstance(token_json, dict) else None
        if not isinstance(access_token, str) or not access_token:
            observe_partner_request("oauth_token", "parse_error")
            raise UpstreamError("server_error", "Partner token response missing access_token")

        observe_partner_request("oauth_token", "ok")
        return self.token_cache.store(access_token, token_json.get("expires_in"), self.clock()).access_token

    def _ticket_path(self, ticket_id: str) -> str:
        company_id = quote(self.settings.partner_company_id or "", safe="")
        return f"/api/v1/companies/{company_id}/tickets/{quote(ticket_id, safe='')}"

    def _request(self, operation: str, method: str, path: str, *, json: Any = None) -> Any:
        missing = self.settings.missing_partner_settings()
        if missing:
            logger.error("partner.not_configured", extra={"operation": operation, "error": ", ".join(missing)})
            raise UpstreamError("server_error", "Partner API is not configured")

        with tracer.start_as_current_span(f"partner.{operation}") as span:
            span.set_attribute("correlation_id", get_correlation_id() or "")
            token = self.access_token()
            url = f"{self.settings.partner_api_base_url.rstrip('/')}{path}"
            headers = {
                "Authorization": f"Bearer {token}",
                "X-Subscription-Key": self.settings.partner_subscription_key or "",
                "Cache-Control": "no-cache",
                "Accept": "application/json",
            }
            try:
                response = self.http.request(method, url, json=json, headers=headers)
                payload = self._decode(response)
            except (httpx.HTTPError, ValueError) as exc:
                observe_partner_request(operation, "network_error")
                logger.error("partner.request_failed", extra={"operation": operation, "error": str(exc)})
                raise UpstreamError("server_error", f"Unexpected error during {operation}") from exc

            span.set_attribute("upstream_status", response.status_code)
            if response.is_error:
                error = map_upstream_status(response.status_code, payload, operation)
                if response.status_code in (401, 403):
                    self.token_cache.clear()
                observe_partner_request(operation, error.code)
                logger.warning(
                    "partner.request_rejected",
                    extra={"operation": operation, "upstream_status": response.status_code, "error": error.message},
                )
                raise error

            observe_partner_request(operation, "ok")
            if isinstance(payload, dict) and "data" in payload:
                return payload["data"]
            return payload

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        if "application/json" in response.headers.get("content-type", ""):
            return response.json()
        return response.text

from __future__ import annotations

from typing import Any


class EventError(Exception):
    """Base class for failures surfaced by the action pipeline."""

    status_code = 500
    code = "server_error"

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details
        super().__init__(message)


class ValidationError(EventError):
    """Malformed or missing input. Always names the offending field."""

    status_code = 400
    code = "validation_error"

    def __init__(self, message: str, *, field: str | None = None, details: dict[str, Any] | None = None) -> None:
        merged = dict(details or {})
        if field is not None:
            merged.setdefault("field", field)
        self.field = field
        super().__init__(message, details=merged or None)


class AuthorizationError(EventError):
    status_code = 403
    code = "forbidden"


class NotFoundError(EventError):
    status_code = 404
    code = "not_found"


class UpstreamError(EventError):
    """Partner ticketing API failure, mapped from the upstream HTTP status."""

    _status_by_code = {
        "not_found": 404,
        "upstream_auth_failed": 502,
        "upstream_error": 502,
        "server_error": 500,
    }

    def __init__(
        self,
        code: str,
        message: str,
        *,
        upstream_status: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code
        self.status_code = self._status_by_code.get(code, 502)
        self.upstream_status = upstream_status
        merged = dict(details or {})
        if upstream_status is not None:
            merged.setdefault("upstreamStatus", upstream_status)
        super().__init__(message, details=merged or None)


class PersistenceError(EventError):
    """Store failure. ``partial`` is set when an earlier write already took effect."""

    status_code = 500
    code = "persistence_error"

    def __init__(self, message: str, *, partial: bool = False, details: dict[str, Any] | None = None) -> None:
        self.partial = partial
        if partial:
            self.code = "partial_failure"
            details = {**(details or {}), "partial": True}
        super().__init__(message, details=details)

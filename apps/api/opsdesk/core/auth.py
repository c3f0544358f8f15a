import uuid
from dataclasses import dataclass, field
from typing import Any

from fastapi import HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from opsdesk.core.config import Settings, get_settings

DEFAULT_DISPLAY_NAME = "Usuário"
_NAME_CLAIMS = ("full_name", "name", "user_name", "username")


@dataclass
class AuthUser:
    sub: str
    email: str
    name: str
    roles: list[str] = field(default_factory=list)


def pick_display_name(claims: dict[str, Any], email: str) -> str:
    metadata = claims.get("user_metadata")
    sources = [metadata, claims] if isinstance(metadata, dict) else [claims]
    for source in sources:
        for key in _NAME_CLAIMS:
            value = source.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return email.strip() or DEFAULT_DISPLAY_NAME


def _mock_user(settings: Settings) -> AuthUser | None:
    mock_id = (settings.mock_user_id or "").strip()
    if not mock_id:
        return None
    try:
        uuid.UUID(mock_id)
    except ValueError:
        return None
    return AuthUser(
        sub=mock_id,
        email=(settings.mock_user_email or "mock@example.com").strip(),
        name=(settings.mock_user_name or "Mock User").strip(),
        roles=["user"],
    )


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""
    settings = get_settings()

    if not token:
        mock = _mock_user(settings)
        if mock is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")
        return mock

    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")

    subject = payload.get("sub")
    if not subject:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="not authenticated")
    email = str(payload.get("email") or "")
    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    return AuthUser(
        sub=str(subject),
        email=email,
        name=pick_display_name(payload, email),
        roles=[str(role) for role in roles],
    )

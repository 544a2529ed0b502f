from __future__ import annotations

from dataclasses import dataclass

from fastapi import Header

from app.core.errors import ApplicationError


@dataclass(frozen=True)
class AuthContext:
    user_id: str


def resolve_auth_context(authorization: str | None) -> AuthContext:
    """Resolve the caller from an ``Authorization: Bearer <token>`` header.

    Credentials live outside this service; any non-empty bearer token is the
    caller's user id.
    """

    raw = (authorization or "").strip()
    if not raw.lower().startswith("bearer "):
        raise ApplicationError.unauthorized()
    token = raw[len("bearer ") :].strip()
    if not token:
        raise ApplicationError.unauthorized()
    return AuthContext(user_id=token)


def get_auth_context(authorization: str | None = Header(default=None)) -> AuthContext:
    return resolve_auth_context(authorization)

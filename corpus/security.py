"""Bearer token issue/verification and role gating.

Tokens are HS256 JWTs carrying ``role``, ``userId`` and ``email``; the
pipelines trust the decoded identity as-is.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import settings
from .errors import AuthError
from .models import Role

MODERATOR_ROLES = {Role.ADMIN.value, Role.MANAGER.value}

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass
class Identity:
    """Authenticated caller."""
    role: str
    user_id: int | None = None
    email: str | None = None

    @property
    def is_moderator(self) -> bool:
        return self.role in MODERATOR_ROLES


def create_access_token(
    role: str,
    *,
    user_id: int | None = None,
    email: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.auth.expires_minutes))
    payload: dict[str, Any] = {
        "role": role,
        "iat": now,
        "exp": expire,
    }
    if user_id is not None:
        payload["userId"] = user_id
        payload["sub"] = str(user_id)
    if email is not None:
        payload["email"] = email
    return jwt.encode(payload, settings.auth.secret_key, algorithm=settings.auth.algorithm)


def verify_access_token(token: str) -> Identity:
    try:
        payload = jwt.decode(token, settings.auth.secret_key, algorithms=[settings.auth.algorithm])
    except JWTError as exc:
        raise AuthError("Invalid token") from exc
    role = payload.get("role")
    if not role:
        raise AuthError("Token carries no role")
    return Identity(role=role, user_id=payload.get("userId"), email=payload.get("email"))


def check_admin_password(username: str, password: str) -> bool:
    """Compare against the configured admin username and bcrypt hash."""
    if not settings.auth.admin_password_hash or username != settings.auth.admin_username:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), settings.auth.admin_password_hash.encode("utf-8"))
    except ValueError:
        return False


async def get_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Identity:
    if credentials is None or not credentials.credentials:
        raise AuthError("Missing bearer token")
    return verify_access_token(credentials.credentials)


async def require_moderator(identity: Identity = Depends(get_identity)) -> Identity:
    """Admin or Manager only."""
    if not identity.is_moderator:
        raise AuthError("Moderator role required", forbidden=True)
    return identity

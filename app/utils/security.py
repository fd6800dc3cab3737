"""Security helpers for JWT handling and shared-secret checks."""

from __future__ import annotations

import hmac
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from app.config.settings import settings
from app.models.user import User


class AuthenticationError(Exception):
    """Raised when a JWT cannot be decoded or is otherwise invalid."""


class TokenPayload(BaseModel):
    """Minimal payload structure embedded in JWT access tokens."""

    sub: str
    exp: datetime
    user: dict[str, Any] | None = None
    iat: datetime | None = None


def create_access_token(
    subject: str,
    user: User | None = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Generate a signed JWT access token for the provided subject."""

    now = datetime.now(timezone.utc)
    expires_delta = expires_delta or timedelta(
        minutes=settings.security.access_token_expires_minutes
    )
    expire_at = now + expires_delta
    to_encode: dict[str, Any] = {"sub": subject, "exp": expire_at, "iat": now}

    if user is not None:
        to_encode["user"] = {
            "id": user.id,
            "name": user.full_name,
            "role": user.role.value,
        }

    secret = settings.security.jwt_secret_key.get_secret_value()
    return jwt.encode(
        to_encode,
        secret,
        algorithm=settings.security.jwt_algorithm,
    )


def decode_access_token(token: str) -> TokenPayload:
    """Decode and validate a JWT access token, returning its payload."""

    secret = settings.security.jwt_secret_key.get_secret_value()
    try:
        payload = jwt.decode(
            token, secret, algorithms=[settings.security.jwt_algorithm]
        )
        return TokenPayload.model_validate(payload)
    except (JWTError, ValidationError) as exc:
        raise AuthenticationError("Invalid authentication token") from exc


def secrets_match(provided: str, expected: str) -> bool:
    """Constant-time comparison of a presented credential with the expected one."""

    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


__all__ = [
    "create_access_token",
    "decode_access_token",
    "secrets_match",
    "AuthenticationError",
    "TokenPayload",
]

"""JWT helpers for authenticating run owners."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ValidationError

from app.config.settings import settings


class AuthenticationError(Exception):
    """Raised when a JWT cannot be decoded or is otherwise invalid."""


class TokenPayload(BaseModel):
    """Minimal payload structure embedded in JWT access tokens."""

    sub: str
    exp: datetime
    iat: datetime | None = None


def create_access_token(
    subject: str,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Generate a signed JWT access token for the provided subject.

    Tokens are normally issued by the identity service; this helper exists for
    tooling and tests that share the signing secret.
    """

    now = datetime.now(timezone.utc)
    expires_delta = expires_delta or timedelta(
        minutes=settings.security.access_token_expires_minutes
    )
    to_encode: dict[str, Any] = {"sub": subject, "exp": now + expires_delta, "iat": now}

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


__all__ = [
    "AuthenticationError",
    "TokenPayload",
    "create_access_token",
    "decode_access_token",
]

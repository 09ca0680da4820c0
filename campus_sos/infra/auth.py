from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))
JWT_AUDIENCE = os.getenv("JWT_AUDIENCE", "authenticated")


@dataclass(frozen=True)
class Identity:
    """The signed-in account as asserted by the identity provider."""

    user_id: str
    email: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def full_name(self) -> str | None:
        value = self.metadata.get("full_name")
        return value if isinstance(value, str) and value.strip() else None

    @property
    def roll_number(self) -> str | None:
        value = self.metadata.get("roll_number")
        return str(value) if value else None

    @property
    def role(self) -> str | None:
        value = self.metadata.get("role")
        return value if isinstance(value, str) and value else None


def create_access_token(
    *,
    user_id: str,
    email: str | None = None,
    metadata: dict[str, Any] | None = None,
    expires_minutes: int | None = None,
) -> str:
    now = datetime.now(UTC)
    expire_delta = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    payload: dict[str, Any] = {
        "sub": user_id,
        "aud": JWT_AUDIENCE,
        "email": email,
        "user_metadata": metadata or {},
        "iat": int(now.timestamp()),
        "exp": int((now + expire_delta).timestamp()),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM], audience=JWT_AUDIENCE)
    if not isinstance(decoded, dict):
        raise ValueError("Invalid token payload")
    return decoded


def identity_from_claims(claims: dict[str, Any]) -> Identity | None:
    subject = claims.get("sub")
    if not isinstance(subject, str) or not subject:
        return None
    email = claims.get("email")
    metadata = claims.get("user_metadata")
    return Identity(
        user_id=subject,
        email=email if isinstance(email, str) and email else None,
        metadata=dict(metadata) if isinstance(metadata, dict) else {},
    )

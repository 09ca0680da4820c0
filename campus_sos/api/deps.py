from __future__ import annotations

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, WebSocket, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from campus_sos.infra.auth import Identity, decode_access_token, identity_from_claims

bearer_scheme = HTTPBearer(auto_error=False)


def _claims_or_none(token: str | None) -> dict[str, Any] | None:
    if not token:
        return None
    try:
        return decode_access_token(token)
    except Exception:
        return None


def get_optional_identity(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> Identity | None:
    token = credentials.credentials if credentials is not None else None
    claims = _claims_or_none(token)
    if claims is None:
        return None
    request.state.claims = claims
    return identity_from_claims(claims)


def get_current_identity(
    identity: Annotated[Identity | None, Depends(get_optional_identity)],
) -> Identity:
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        )
    return identity


def extract_ws_token(websocket: WebSocket, token: str | None) -> str | None:
    if token:
        return token
    auth_header = websocket.headers.get("authorization", "")
    if auth_header.lower().startswith("bearer "):
        return auth_header[7:].strip()
    return None


def identity_from_ws_token(token: str | None) -> Identity | None:
    claims = _claims_or_none(token)
    if claims is None:
        return None
    return identity_from_claims(claims)

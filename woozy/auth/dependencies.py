"""Request authentication: bearer token resolution and FastAPI dependencies."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException, Request, status

from woozy.auth.jwt import AuthContext, InvalidTokenError, decode_access_token


AUTH_CONTEXT_KEY = "auth_context"


def resolve_request_auth_context(request: Request) -> Optional[AuthContext]:
    """Decode the bearer token if one is present. Invalid tokens resolve to anonymous."""

    scheme, _, token = (request.headers.get("authorization") or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None

    try:
        return decode_access_token(token)
    except InvalidTokenError:
        return None


def get_optional_auth_context(request: Request) -> Optional[AuthContext]:
    return getattr(request.state, AUTH_CONTEXT_KEY, None)


def require_auth_context(auth: Optional[AuthContext] = Depends(get_optional_auth_context)) -> AuthContext:
    if auth is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return auth

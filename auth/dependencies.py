"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two token sources are checked in priority order:
  1. "Bearer" cookie -- set by POST /auth/signin.
  2. Authorization: Bearer <token> header -- API clients.

get_access_token() extracts the raw token; get_current_user() resolves it
through AuthService.authenticate_access_token(), which also rejects revoked
tokens, and raises HTTP 401 if that fails.

Layer rule: auth/dependencies.py may import from fastapi because it is part of
the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import User
from auth.service import AuthService
from auth.tokens import AUTH_COOKIE_NAME


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_access_token(request: Request) -> str | None:
    """Return the raw access token from the cookie or Authorization header."""
    token = request.cookies.get(AUTH_COOKIE_NAME)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
    return token or None


async def get_current_user(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    token = get_access_token(request)
    user = await auth_service.authenticate_access_token(token) if token else None
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user

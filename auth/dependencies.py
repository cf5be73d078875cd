"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

get_auth_service() hands route handlers the AuthService built in the app
lifespan (app.state.auth). Routes never construct stores themselves.

get_current_user() authenticates a request by its access token, read from the
Authorization: Bearer header. Refresh tokens are never accepted here -- they
only work against POST /auth/refresh.

try_get_current_user() is the soft variant (returns None on failure).

Layer rule: may import from fastapi because this module is part of the
FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.service import AuthService
from auth.tokens import decode_access_token


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth


async def try_get_current_user(request: Request) -> User | None:
    """Return the active User behind the request's bearer token, or None. Never raises."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None

    payload = decode_access_token(auth_header[7:])
    if payload is None:
        return None

    service = get_auth_service(request)
    user = await service.users.get_by_id(payload["sub"])
    if user is None or not user.is_active:
        return None
    return user


async def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = await try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

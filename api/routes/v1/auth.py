"""
api/routes/v1/auth.py -- Authentication REST endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; returns credential triple, sets refresh cookie
  POST /api/v1/auth/register         -- create password account and sign it in
  POST /api/v1/auth/refresh          -- rotate refresh token (cookie or body)
  POST /api/v1/auth/logout           -- revoke refresh session; always 204
  GET  /api/v1/auth/google           -- start Google sign-in; sets signed attempt cookie
  GET  /api/v1/auth/google/callback  -- finish Google sign-in
  GET  /api/v1/auth/providers        -- list enabled OAuth providers (public)
  GET  /api/v1/auth/me               -- current user (Bearer access token)

Security:
  [H2] POST /login is rate-limited per client IP (Settings.login_rate_limit).
  [M5] Cache-Control: no-store on every response that carries tokens.
  Refresh cookie: httpOnly, SameSite=Lax, path-scoped to /api/v1/auth so it
  is never sent to business endpoints. Secure when SECURE_COOKIES=true.
  Attempt cookie: same flags, path-scoped to /api/v1/auth/google, 5 minutes.

Errors raised by the auth core (AuthError subclasses) are rendered by the
exception handler in api/main.py.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.errors import auth_error_response
from api.limiter import limiter, login_rate_limit
from api.models import (
    AuthResponse,
    GoogleAuthorizeResponse,
    LoginRequest,
    MeResponse,
    RegisterRequest,
    SessionTokenRequest,
    UserInfo,
)
from auth.attempts import decode_attempt, encode_attempt
from auth.dependencies import get_auth_service, get_current_user
from auth.errors import AuthError
from auth.models import AuthResult, SessionContext, User
from auth.service import AuthService
from auth.sessions import REFRESH_TOKEN_TTL
from core.config import get_settings

# Auth policy:
# - login, register, refresh, logout, google, google/callback, providers: public
# - me: requires a valid access token (get_current_user)
router = APIRouter()

REFRESH_COOKIE_NAME = "refresh_token"
REFRESH_COOKIE_PATH = "/api/v1/auth"
ATTEMPT_COOKIE_NAME = "google_oauth_attempt"
ATTEMPT_COOKIE_PATH = "/api/v1/auth/google"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _session_context(request: Request) -> SessionContext:
    return SessionContext(
        user_agent=request.headers.get("user-agent"),
        ip_address=request.client.host if request.client else None,
    )


def _presented_refresh_token(request: Request, body: Optional[SessionTokenRequest]) -> str | None:
    cookie_value = request.cookies.get(REFRESH_COOKIE_NAME)
    if cookie_value:
        return cookie_value
    return body.refresh_token if body is not None else None


def _set_refresh_cookie(response: Response, value: str) -> None:
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        value=value,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
        max_age=int(REFRESH_TOKEN_TTL.total_seconds()),
        path=REFRESH_COOKIE_PATH,
    )


def _clear_refresh_cookie(response: Response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE_NAME,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
    )


def _clear_attempt_cookie(response: Response) -> None:
    response.delete_cookie(
        ATTEMPT_COOKIE_NAME,
        path=ATTEMPT_COOKIE_PATH,
        httponly=True,
        samesite="lax",
        secure=get_settings().secure_cookies,
    )


def _auth_response(result: AuthResult, status_code: int = 200) -> JSONResponse:
    """Render a credential triple, set the refresh cookie, and forbid caching [M5]."""
    body = AuthResponse(
        user=_user_info(result.user),
        access_token=result.access_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        refresh_token=result.refresh_token,
        expires_at=result.expires_at,
    )
    resp = JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))
    _set_refresh_cookie(resp, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _user_info(user: User) -> UserInfo:
    return UserInfo(id=user.id, email=user.email, full_name=user.full_name, role=user.role)


# ---------------------------------------------------------------------------
# Password and session endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # [H2] brute-force mitigation
@router.post("/auth/login", response_model=AuthResponse)
async def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same 401 body
    ("bad_credentials") so the endpoint cannot be used to enumerate accounts.
    """
    result = await service.login(body.email, body.password, _session_context(request))
    return _auth_response(result)


@limiter.limit(login_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
async def register(
    request: Request,
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create a password account and return a signed-in session. 409 if the email is taken."""
    result = await service.register(
        body.email, body.password, body.full_name, body.role.value, _session_context(request)
    )
    return _auth_response(result, status_code=201)


@router.post("/auth/refresh", response_model=AuthResponse)
async def refresh(
    request: Request,
    body: Optional[SessionTokenRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Rotate the presented refresh token. A 401 here means "sign in again" -- do not retry."""
    token = _presented_refresh_token(request, body)
    result = await service.refresh(token, _session_context(request))
    return _auth_response(result)


@router.post("/auth/logout", status_code=204)
async def logout(
    request: Request,
    body: Optional[SessionTokenRequest] = None,
    service: AuthService = Depends(get_auth_service),
) -> Response:
    """Revoke the session and clear the refresh cookie. Always 204, even with no session."""
    await service.logout(_presented_refresh_token(request, body))
    resp = Response(status_code=204)
    _clear_refresh_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# Google sign-in
# ---------------------------------------------------------------------------


@router.get("/auth/google", response_model=GoogleAuthorizeResponse)
async def google_authorize(service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Start Google sign-in against the configured redirect URI.

    The redirect URI is never taken from the request -- accepting it from the
    client would turn this endpoint into an open redirect for auth codes.
    """
    attempt = service.start_google()
    resp = JSONResponse(
        content=GoogleAuthorizeResponse(
            authorization_url=attempt.authorization_url,
            state=attempt.state,
            code_verifier=attempt.code_verifier,
        ).model_dump()
    )
    resp.set_cookie(
        ATTEMPT_COOKIE_NAME,
        value=encode_attempt(attempt),
        httponly=True,
        samesite="lax",
        secure=service.settings.secure_cookies,
        max_age=service.settings.oauth_attempt_ttl_seconds,
        path=ATTEMPT_COOKIE_PATH,
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.get("/auth/google/callback", response_model=AuthResponse)
async def google_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Finish Google sign-in. The attempt cookie is single-use: cleared on success and failure."""
    attempt = decode_attempt(request.cookies.get(ATTEMPT_COOKIE_NAME))
    try:
        result = await service.complete_google(code, state, attempt, _session_context(request))
    except AuthError as exc:
        resp = auth_error_response(exc)
        _clear_attempt_cookie(resp)
        return resp
    resp = _auth_response(result)
    _clear_attempt_cookie(resp)
    return resp


@router.get("/auth/providers")
async def list_providers(service: AuthService = Depends(get_auth_service)) -> list[dict]:
    """Return the configured OAuth providers so the login page knows which buttons to render."""
    if service.settings.google_enabled:
        return [{"name": "google", "label": "Google"}]
    return []


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        user_id=current_user.id,
        email=current_user.email,
        full_name=current_user.full_name,
        role=current_user.role,
        oauth_provider=current_user.oauth_provider,
    )

"""
tests/conftest.py -- Shared test fixtures for the coursework auth test suite.

This module provides:
  - engine / user_store / session_store: a fresh file-backed SQLite database
    per test (aiosqlite), schema created
  - google_stub / identity_client: a GoogleIdentityClient wired to an
    httpx.MockTransport that plays Google's token and userinfo endpoints
  - api_client: TestClient over the real app with a patched lifespan and
    seeded accounts

Design: temp-file SQLite, not :memory:. The async engine pools several
aiosqlite connections and every plain :memory: connection would see its own
blank database.

Environment variables must be set before any auth/core/api import, because
get_settings() is cached and several modules read it at import time:
  DEBUG=true              -- auto-generate SECRET_KEY instead of refusing to start
  BCRYPT_ROUNDS=4         -- keep password hashing fast
  RATE_LIMIT_ENABLED=false
  ALLOWED_HOSTS           -- TestClient sends Host: testserver
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from urllib.parse import parse_qs

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("GOOGLE_CLIENT_ID", "test-client.apps.googleusercontent.com")
os.environ.setdefault("GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GOOGLE_REDIRECT_URI", "http://localhost:3000/auth/google/callback")

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from jose import jwt

from api.main import app
from auth.db import create_engine, init_schema
from auth.models import User
from auth.oauth import GOOGLE_TOKEN_ENDPOINT, GOOGLE_USERINFO_ENDPOINT, GoogleIdentityClient
from auth.service import AuthService
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from core.config import get_settings

SEEDED_USER_ID = "user-42"
SEEDED_EMAIL = "student@example.edu"
SEEDED_PASSWORD = "correct-horse-battery"
SUSPENDED_EMAIL = "suspended@example.edu"
GOOGLE_EMAIL = "linked.student@example.edu"
GOOGLE_SUBJECT = "google-sub-1001"


# ---------------------------------------------------------------------------
# Storage fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_engine(f"sqlite+aiosqlite:///{tmp_path}/auth.db")
    await init_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def user_store(engine) -> UserStore:
    return UserStore(engine)


@pytest.fixture
def session_store(engine) -> SessionStore:
    return SessionStore(engine)


async def create_password_user(
    store: UserStore,
    email: str,
    password: str = SEEDED_PASSWORD,
    role: str = "student",
    status: str = "active",
    user_id: str | None = None,
) -> User:
    """Insert a password account and return it as read back from storage."""
    uid = await store.create_user(
        User(
            id=user_id,
            email=email,
            full_name="Test User",
            role=role,
            status=status,
            hashed_password=hash_password(password),
        )
    )
    return await store.get_by_id(uid)


@pytest.fixture
def make_user():
    """Return the create_password_user helper so tests do not import conftest."""
    return create_password_user


# ---------------------------------------------------------------------------
# Google stub
# ---------------------------------------------------------------------------


def _same_endpoint(request: httpx.Request, endpoint: str) -> bool:
    target = httpx.URL(endpoint)
    return request.url.host == target.host and request.url.path == target.path


class GoogleStub:
    """In-process stand-in for Google's token and userinfo endpoints.

    Tests mutate id_claims / userinfo / token_status before triggering an
    exchange. Every request the client sends is recorded in self.requests.
    """

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        self.id_claims = {
            "iss": "https://accounts.google.com",
            "aud": client_id,
            "sub": GOOGLE_SUBJECT,
            "email": GOOGLE_EMAIL,
            "email_verified": True,
        }
        self.userinfo = {
            "sub": GOOGLE_SUBJECT,
            "email": GOOGLE_EMAIL,
            "email_verified": True,
            "name": "Linked Student",
        }
        self.token_status = 200
        self.userinfo_status = 200
        self.requests: list[httpx.Request] = []

    def set_identity(self, subject: str, email: str, email_verified: bool = True, name: str = "Google User") -> None:
        self.id_claims.update(sub=subject, email=email, email_verified=email_verified)
        self.userinfo.update(sub=subject, email=email, email_verified=email_verified, name=name)

    def token_form(self) -> dict[str, str]:
        """Return the form fields of the last token request."""
        token_requests = [r for r in self.requests if _same_endpoint(r, GOOGLE_TOKEN_ENDPOINT)]
        fields = parse_qs(token_requests[-1].content.decode())
        return {k: v[0] for k, v in fields.items()}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if _same_endpoint(request, GOOGLE_TOKEN_ENDPOINT):
            if self.token_status != 200:
                return httpx.Response(
                    self.token_status,
                    json={"error": "invalid_grant", "error_description": "Bad Request"},
                )
            id_token = jwt.encode(self.id_claims, "stub-signing-key", algorithm="HS256")
            return httpx.Response(
                200,
                json={
                    "access_token": "ya29.stub-access-token",
                    "expires_in": 3599,
                    "token_type": "Bearer",
                    "scope": "openid email profile",
                    "id_token": id_token,
                },
            )
        if _same_endpoint(request, GOOGLE_USERINFO_ENDPOINT):
            if request.headers.get("Authorization") != "Bearer ya29.stub-access-token":
                return httpx.Response(401, json={"error": "invalid_token"})
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status, content=b"upstream error")
            return httpx.Response(200, content=json.dumps(self.userinfo).encode())
        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def google_stub() -> GoogleStub:
    return GoogleStub(get_settings().google_client_id)


@pytest.fixture
def identity_client(google_stub: GoogleStub) -> GoogleIdentityClient:
    settings = get_settings()
    return GoogleIdentityClient(
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        transport=google_stub.transport,
    )


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


async def _seed(service: AuthService) -> None:
    await create_password_user(service.users, SEEDED_EMAIL, user_id=SEEDED_USER_ID)
    await create_password_user(service.users, SUSPENDED_EMAIL, status="suspended")
    await create_password_user(service.users, GOOGLE_EMAIL)


def _patch_lifespan(db_url: str, google_stub: GoogleStub):
    """Return an async context manager that replaces the real lifespan.

    Builds the AuthService on the test database, seeds accounts, and swaps
    the Google client for one backed by the stub transport. The purge_task is
    a long sleep so shutdown still has a real task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        settings = get_settings()
        service = await AuthService.create(settings, engine=create_engine(db_url))
        service.identity_client = GoogleIdentityClient(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            transport=google_stub.transport,
        )
        await _seed(service)
        app.state.auth = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()
        await service.close()

    return test_lifespan


@pytest.fixture(scope="module")
def api_stub() -> GoogleStub:
    return GoogleStub(get_settings().google_client_id)


@pytest.fixture(scope="module")
def api_client(tmp_path_factory, api_stub: GoogleStub) -> Generator[tuple[TestClient, str, str], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan, so tests
    hit real route handlers and middleware against an isolated database. The
    token is a one-hour access token for the seeded student (SEEDED_USER_ID).
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    app.router.lifespan_context = _patch_lifespan(f"sqlite+aiosqlite:///{db_path}", api_stub)

    token = create_access_token(user_id=SEEDED_USER_ID, role="student", expire_seconds=3600)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, SEEDED_USER_ID


@pytest.fixture
def client(api_client: tuple[TestClient, str, str]) -> TestClient:
    """The module's TestClient with an empty cookie jar."""
    test_client, _token, _uid = api_client
    test_client.cookies.clear()
    return test_client

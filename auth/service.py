"""
auth/service.py -- AuthService: the explicitly constructed handle the HTTP layer talks to.

There is no global storage client. The app lifespan builds one AsyncEngine,
wraps it in a UserStore and a SessionStore, adds the Google identity client
and settings, and stores the resulting AuthService on app.state. Tests build
their own with substitute collaborators.

Each method is a thin pass-through to the flow module that owns the logic,
so the flows stay plain functions over their collaborators.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncEngine

from auth.db import create_engine, init_schema
from auth.google import complete_google_authorization, start_google_authorization
from auth.models import AuthResult, GoogleAuthorization, SessionContext
from auth.oauth import GoogleIdentityClient
from auth.password import handle_password_login, handle_register_account
from auth.refresh import handle_logout, handle_session_refresh
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import Settings


@dataclass
class AuthService:
    users: UserStore
    sessions: SessionStore
    identity_client: GoogleIdentityClient
    settings: Settings

    @classmethod
    async def create(cls, settings: Settings, engine: AsyncEngine | None = None) -> AuthService:
        """Build the service (and its engine, unless one is given) and ensure the schema exists."""
        engine = engine or create_engine(settings.database_url)
        await init_schema(engine)
        return cls(
            users=UserStore(engine),
            sessions=SessionStore(engine),
            identity_client=GoogleIdentityClient.from_settings(settings),
            settings=settings,
        )

    async def close(self) -> None:
        await self.users.engine.dispose()

    async def login(self, email: str, password: str, context: SessionContext) -> AuthResult:
        return await handle_password_login(self.users, self.sessions, email, password, context)

    async def register(
        self, email: str, password: str, full_name: str, role: str, context: SessionContext
    ) -> AuthResult:
        return await handle_register_account(self.users, self.sessions, email, password, full_name, role, context)

    async def refresh(self, refresh_token: str | None, context: SessionContext) -> AuthResult:
        return await handle_session_refresh(self.users, self.sessions, refresh_token, context)

    async def logout(self, refresh_token: str | None) -> None:
        await handle_logout(self.sessions, refresh_token)

    def start_google(self, redirect_uri: str | None = None) -> GoogleAuthorization:
        return start_google_authorization(
            redirect_uri if redirect_uri is not None else self.settings.google_redirect_uri,
            self.settings.google_client_id,
        )

    async def complete_google(
        self,
        code: str | None,
        state: str | None,
        attempt: GoogleAuthorization | None,
        context: SessionContext,
    ) -> AuthResult:
        return await complete_google_authorization(
            self.users,
            self.sessions,
            self.identity_client,
            code,
            state,
            attempt,
            context,
            auto_provision=self.settings.google_auto_provision,
        )

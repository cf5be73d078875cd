"""
auth/users.py -- Account checks and session issuance shared by every sign-in flow.

Password login, registration, Google callback and refresh all end the same
way: confirm the account may hold a session, then hand back an access token
plus a refresh token. Keeping that tail here means the flows cannot drift
apart on what a successful sign-in returns.
"""

from __future__ import annotations

from auth.crypto import generate_refresh_token
from auth.errors import AccountInactiveError
from auth.models import AuthResult, SessionContext, User
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import create_access_token


def assert_active(user: User) -> None:
    if not user.is_active:
        raise AccountInactiveError()


async def start_session(users: UserStore, sessions: SessionStore, user: User, context: SessionContext) -> AuthResult:
    """Persist a brand-new refresh session for user and issue the credential triple."""
    issued = await sessions.persist_session(user.id, generate_refresh_token(), context)
    await users.update_last_login(user.id)
    return AuthResult(
        user=user,
        access_token=create_access_token(user.id, user.role),
        refresh_token=issued.refresh_token,
        expires_at=issued.expires_at,
    )

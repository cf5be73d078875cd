"""
auth/refresh.py -- Refresh-token rotation and logout.

Rotation-on-use: every successful refresh overwrites the session's hash with
that of a new token, so each refresh token works exactly once. A token that
has already been rotated no longer matches any row and is rejected exactly
like an unknown token.

Known gap: replay of a rotated token is not singled out, and the session it
belonged to is not revoked as a whole (no token-family reuse detection).

Rotation is conditional on the session still holding the presented hash and
being unrevoked, so a logout or a competing refresh that lands between the
lookup and the UPDATE wins; the late rotation fails as invalid_session.

Callers must treat any refresh failure as "sign in again", never retry with
the same token.
"""

from __future__ import annotations

import logging

from auth.crypto import generate_refresh_token, hash_value
from auth.errors import SESSION_ERROR, AccountInactiveError, AuthenticationError
from auth.models import AuthResult, SessionContext
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import create_access_token

logger = logging.getLogger("coursework.auth.refresh")


async def handle_session_refresh(
    users: UserStore,
    sessions: SessionStore,
    refresh_token: str | None,
    context: SessionContext,
) -> AuthResult:
    """Exchange a live refresh token for a new access token and a rotated refresh token."""
    if not refresh_token:
        raise AuthenticationError("Refresh token is missing.", code="missing_session")

    presented_hash = hash_value(refresh_token)
    session = await sessions.find_active_session(presented_hash)
    if session is None:
        logger.info("Refresh rejected: no live session for presented token")
        raise AuthenticationError(SESSION_ERROR, code="invalid_session")

    user = await users.get_by_id(session.user_id)
    if user is None:
        await sessions.revoke_session(session.id)
        logger.warning("Refresh rejected: session %s belongs to a missing account", session.id)
        raise AuthenticationError(SESSION_ERROR, code="invalid_session")

    if not user.is_active:
        await sessions.revoke_all_for_user(user.id)
        raise AccountInactiveError()

    try:
        rotated = await sessions.rotate_session(
            session.id, generate_refresh_token(), context, expected_hash=presented_hash
        )
    except LookupError as exc:
        logger.info("Refresh rejected: session %s changed before rotation", session.id)
        raise AuthenticationError(SESSION_ERROR, code="invalid_session") from exc
    logger.debug("Session %s rotated", session.id)
    return AuthResult(
        user=user,
        access_token=create_access_token(user.id, user.role),
        refresh_token=rotated.refresh_token,
        expires_at=rotated.expires_at,
    )


async def handle_logout(sessions: SessionStore, refresh_token: str | None) -> None:
    """Revoke the session holding refresh_token.

    Always succeeds: no token, an unknown token and an already-revoked session
    are all treated as "already logged out".
    """
    if not refresh_token:
        return
    if await sessions.revoke_by_token_hash(hash_value(refresh_token)):
        logger.info("Session revoked on logout")

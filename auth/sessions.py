"""
auth/sessions.py -- Persist, rotate, and revoke refresh sessions.

Pattern: Repository + Data Mapper over the auth_sessions table (see auth/db.py).
Flow code never touches SQL directly.

Security:
  The raw refresh token never reaches the database. persist_session() and
  rotate_session() store hash_value(token) and hand the raw token back to the
  caller, which is the only place it exists afterwards.

  Rotation is one UPDATE ... WHERE id = :id. The database serializes
  concurrent writes to the same row, so when two refreshes race on one token
  the last commit wins and the other caller's new token is simply unknown.
  No application-level lock is taken.

  Revocation only writes revoked_at when it is still NULL, so a second logout
  leaves the first timestamp untouched.

Expiry is sliding: every rotation resets expires_at to now + 14 days.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from auth.crypto import hash_value
from auth.db import auth_sessions, utcnow
from auth.models import AuthSession, IssuedSession, SessionContext

logger = logging.getLogger("coursework.auth.sessions")

REFRESH_TOKEN_TTL = timedelta(days=14)
MAX_USER_AGENT_LENGTH = 256


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def compute_expiry(now: datetime | None = None) -> datetime:
    return (now or utcnow()) + REFRESH_TOKEN_TTL


def _truncate(value: str | None) -> str | None:
    if not value:
        return None
    return value[:MAX_USER_AGENT_LENGTH]


def sanitize_context(context: SessionContext) -> dict:
    """Return the audit columns for a session: truncated user agent and hashed IP."""
    return {
        "user_agent": _truncate(context.user_agent),
        "ip_hash": hash_value(context.ip_address) if context.ip_address else None,
    }


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for AuthSession records.

    Usage:
        store = SessionStore(engine)
        issued = await store.persist_session(user.id, generate_refresh_token(), SessionContext())
        session = await store.find_active_session(hash_value(issued.refresh_token))
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    async def persist_session(self, user_id: str, refresh_token: str, context: SessionContext) -> IssuedSession:
        """Insert a new session row for user_id and return the raw token with its expiry."""
        now = utcnow()
        session_id = uuid.uuid4().hex
        expires_at = compute_expiry(now)
        async with self.engine.begin() as conn:
            await conn.execute(
                auth_sessions.insert().values(
                    id=session_id,
                    user_id=user_id,
                    refresh_token_hash=hash_value(refresh_token),
                    expires_at=expires_at,
                    created_at=now,
                    revoked_at=None,
                    **sanitize_context(context),
                )
            )
        logger.debug("Session %s issued for user %s", session_id, user_id)
        return IssuedSession(session_id=session_id, refresh_token=refresh_token, expires_at=expires_at)

    async def rotate_session(
        self,
        session_id: str,
        refresh_token: str,
        context: SessionContext,
        expected_hash: str | None = None,
    ) -> IssuedSession:
        """Overwrite hash, expiry and audit columns of an existing session; clear revoked_at.

        With expected_hash the UPDATE only applies while the row still holds
        that hash and is not revoked. The refresh flow passes the hash it just
        looked up, so a logout or a competing refresh that commits in between
        wins and this rotation matches nothing.

        Raises LookupError when no row matched: the session is gone (e.g.
        purge_expired), or expected_hash was given and the row moved on.
        """
        expires_at = compute_expiry()
        condition = auth_sessions.c.id == session_id
        if expected_hash is not None:
            condition = (
                condition
                & (auth_sessions.c.refresh_token_hash == expected_hash)
                & auth_sessions.c.revoked_at.is_(None)
            )
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(auth_sessions)
                .where(condition)
                .values(
                    refresh_token_hash=hash_value(refresh_token),
                    expires_at=expires_at,
                    revoked_at=None,
                    **sanitize_context(context),
                )
            )
        if result.rowcount == 0:
            raise LookupError(f"auth session {session_id!r} not found or no longer current")
        return IssuedSession(session_id=session_id, refresh_token=refresh_token, expires_at=expires_at)

    async def find_active_session(self, refresh_token_hash: str) -> AuthSession | None:
        """Return the session whose current hash matches, if not revoked and not expired."""
        now = utcnow()
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    select(auth_sessions).where(
                        (auth_sessions.c.refresh_token_hash == refresh_token_hash)
                        & auth_sessions.c.revoked_at.is_(None)
                        & (auth_sessions.c.expires_at > now)
                    )
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    async def get_session(self, session_id: str) -> AuthSession | None:
        async with self.engine.connect() as conn:
            row = (await conn.execute(select(auth_sessions).where(auth_sessions.c.id == session_id))).fetchone()
        return _row_to_session(row) if row is not None else None

    async def get_by_token_hash(self, refresh_token_hash: str) -> AuthSession | None:
        """Look up a session by hash regardless of state. Used for audits and tests."""
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    select(auth_sessions).where(auth_sessions.c.refresh_token_hash == refresh_token_hash)
                )
            ).fetchone()
        return _row_to_session(row) if row is not None else None

    async def revoke_session(self, session_id: str) -> bool:
        """Mark a session revoked. Returns False when it was unknown or already revoked."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(auth_sessions)
                .where((auth_sessions.c.id == session_id) & auth_sessions.c.revoked_at.is_(None))
                .values(revoked_at=utcnow())
            )
        return result.rowcount > 0

    async def revoke_by_token_hash(self, refresh_token_hash: str) -> bool:
        """Mark the session holding this hash revoked. Same idempotency as revoke_session()."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(auth_sessions)
                .where(
                    (auth_sessions.c.refresh_token_hash == refresh_token_hash) & auth_sessions.c.revoked_at.is_(None)
                )
                .values(revoked_at=utcnow())
            )
        return result.rowcount > 0

    async def revoke_all_for_user(self, user_id: str) -> int:
        """Revoke every non-revoked session of a user. Returns the number of rows changed."""
        async with self.engine.begin() as conn:
            result = await conn.execute(
                update(auth_sessions)
                .where((auth_sessions.c.user_id == user_id) & auth_sessions.c.revoked_at.is_(None))
                .values(revoked_at=utcnow())
            )
        if result.rowcount:
            logger.info("Revoked %d session(s) for user %s", result.rowcount, user_id)
        return result.rowcount

    async def list_active_sessions(self, user_id: str) -> list[AuthSession]:
        """Return a user's live sessions, newest first."""
        now = utcnow()
        async with self.engine.connect() as conn:
            rows = (
                await conn.execute(
                    select(auth_sessions)
                    .where(
                        (auth_sessions.c.user_id == user_id)
                        & auth_sessions.c.revoked_at.is_(None)
                        & (auth_sessions.c.expires_at > now)
                    )
                    .order_by(auth_sessions.c.created_at.desc())
                )
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    async def purge_expired(self, older_than: timedelta = timedelta(days=1)) -> int:
        """Delete sessions that expired or were revoked more than older_than ago.

        The grace period keeps just-revoked rows around briefly so audit
        queries right after a logout still see them.
        """
        cutoff = utcnow() - older_than
        async with self.engine.begin() as conn:
            result = await conn.execute(
                delete(auth_sessions).where(
                    or_(auth_sessions.c.expires_at < cutoff, auth_sessions.c.revoked_at < cutoff)
                )
            )
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_session(row) -> AuthSession:
    return AuthSession(
        id=row.id,
        user_id=row.user_id,
        refresh_token_hash=row.refresh_token_hash,
        expires_at=row.expires_at,
        user_agent=row.user_agent,
        ip_hash=row.ip_hash,
        created_at=row.created_at,
        revoked_at=row.revoked_at,
    )

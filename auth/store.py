"""
auth/store.py -- Async SQLAlchemy Core persistence layer for accounts.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Flow and route code never touches SQL directly.

Security:
  Statements are built with SQLAlchemy expressions; values only ever travel
  as bound parameters.

  Emails are normalized (strip + lowercase) on both write and lookup, so the
  case-sensitivity policy lives in exactly one place.

  One local account per (oauth_provider, oauth_subject) is checked here, not
  by a UNIQUE index, since SQLite lets any number of NULL pairs through.
  link_oauth() refuses to attach a subject that is already linked elsewhere.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncEngine

from auth.db import users, utcnow
from auth.errors import ConflictError
from auth.models import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore(engine)
        user_id = await store.create_user(User(email="t@example.edu", full_name="T", role="teacher"))
        user = await store.get_by_email("t@example.edu")
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self.engine = engine

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_user(self, user: User) -> str:
        """Insert a new account and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Callers (e.g. registration) should catch IntegrityError as a signal
        that a concurrent request already created the record.
        """
        user_id = user.id or uuid.uuid4().hex
        async with self.engine.begin() as conn:
            await conn.execute(
                users.insert().values(
                    id=user_id,
                    email=normalize_email(user.email),
                    full_name=user.full_name,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    status=user.status,
                    oauth_provider=user.oauth_provider,
                    oauth_subject=user.oauth_subject,
                    oauth_email_verified=user.oauth_email_verified,
                    created_at=utcnow(),
                )
            )
        return user_id

    async def link_oauth(self, user_id: str, provider: str, subject: str, email_verified: bool) -> None:
        """Associate an external identity with an existing account.

        Raises ConflictError when (provider, subject) already belongs to a
        different account -- one Google identity can never sign in as two users.
        """
        existing = await self.get_by_oauth(provider, subject)
        if existing is not None and existing.id != user_id:
            raise ConflictError("Google account is already linked to another user.")
        async with self.engine.begin() as conn:
            await conn.execute(
                update(users)
                .where(users.c.id == user_id)
                .values(oauth_provider=provider, oauth_subject=subject, oauth_email_verified=email_verified)
            )

    async def mark_oauth_email_verified(self, user_id: str) -> None:
        async with self.engine.begin() as conn:
            await conn.execute(update(users).where(users.c.id == user_id).values(oauth_email_verified=True))

    async def update_status(self, user_id: str, status: str) -> bool:
        """Set account status ("active" / "suspended"). Returns False if user_id was not found."""
        async with self.engine.begin() as conn:
            result = await conn.execute(update(users).where(users.c.id == user_id).values(status=status))
        return result.rowcount > 0

    async def update_last_login(self, user_id: str) -> None:
        """Stamp last_login on every successful session issuance (password and Google)."""
        async with self.engine.begin() as conn:
            await conn.execute(update(users).where(users.c.id == user_id).values(last_login=utcnow()))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_by_email(self, email: str) -> User | None:
        async with self.engine.connect() as conn:
            row = (await conn.execute(select(users).where(users.c.email == normalize_email(email)))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_by_id(self, user_id: str) -> User | None:
        async with self.engine.connect() as conn:
            row = (await conn.execute(select(users).where(users.c.id == user_id))).fetchone()
        return _row_to_user(row) if row is not None else None

    async def get_by_oauth(self, provider: str, subject: str) -> User | None:
        """Look up an account by its linked (provider, subject) pair."""
        async with self.engine.connect() as conn:
            row = (
                await conn.execute(
                    select(users).where((users.c.oauth_provider == provider) & (users.c.oauth_subject == subject))
                )
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    async def count_users(self) -> int:
        async with self.engine.connect() as conn:
            result = (await conn.execute(select(func.count()).select_from(users))).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        full_name=row.full_name,
        hashed_password=row.hashed_password,
        role=row.role,
        status=row.status,
        oauth_provider=row.oauth_provider,
        oauth_subject=row.oauth_subject,
        oauth_email_verified=bool(row.oauth_email_verified),
        created_at=row.created_at,
        last_login=row.last_login,
    )

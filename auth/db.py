"""
auth/db.py -- SQLAlchemy Core schema and async engine factory for the auth tables.

Both repositories (auth/store.py for accounts, auth/sessions.py for refresh
sessions) run against one AsyncEngine built here at process start and passed
in explicitly. There is no module-level engine: tests and the app lifespan
each construct their own.

Timestamps are stored as naive UTC and returned as aware UTC datetimes via the
UTCDateTime decorator. SQLite has no timezone-aware column type, and comparing
naive with aware datetimes in Python raises TypeError, so normalizing at the
column boundary keeps every caller on aware values.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, MetaData, String, Table, Text, event, false
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.types import TypeDecorator


class UTCDateTime(TypeDecorator):
    """DateTime column that accepts aware datetimes and always returns aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("naive datetime passed to a UTC column")
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(320), nullable=False, unique=True),  # stored lowercase
    Column("full_name", String(255), nullable=False),
    Column("hashed_password", Text),  # NULL for Google-only accounts
    Column("role", String(20), nullable=False, server_default="student"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("oauth_provider", String(30)),
    Column("oauth_subject", String(255)),
    Column("oauth_email_verified", Boolean, nullable=False, server_default=false()),
    Column("created_at", UTCDateTime, nullable=False),
    Column("last_login", UTCDateTime),
    # Note: UNIQUE(oauth_provider, oauth_subject) enforced in code, not SQL.
    # SQLite treats two NULLs as distinct in UNIQUE constraints, which would
    # allow duplicate unlinked records for accounts that never used Google.
)

auth_sessions = Table(
    "auth_sessions",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("user_id", String(36), ForeignKey("users.id"), nullable=False, index=True),
    Column("refresh_token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("expires_at", UTCDateTime, nullable=False),
    Column("user_agent", String(256)),  # audit only
    Column("ip_hash", String(64)),  # audit only
    Column("created_at", UTCDateTime, nullable=False),
    Column("revoked_at", UTCDateTime),  # NULL = active
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def create_engine(db_url: str) -> AsyncEngine:
    """Build the AsyncEngine for db_url (e.g. sqlite+aiosqlite:///./auth.db)."""
    engine = create_async_engine(db_url)
    if db_url.startswith("sqlite"):
        event.listen(engine.sync_engine, "connect", _set_wal_mode)
    return engine


async def init_schema(engine: AsyncEngine) -> None:
    """Create any missing auth tables. Idempotent -- safe to call on every startup."""
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)

"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and flows do the
work; these classes only own the domain shape.

Layer rule: stdlib only.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    admin = "admin"
    teacher = "teacher"
    student = "student"


class AccountStatus(str, Enum):
    active = "active"
    suspended = "suspended"


@dataclass
class User:
    """An account in the coursework backend.

    hashed_password is None for Google-only accounts (they have no local
    password and can never pass the password flow).
    oauth_provider / oauth_subject are None until the first Google sign-in
    links the identity; later sign-ins match on the (provider, subject) pair.
    """

    email: str
    full_name: str
    role: str = Role.student.value
    id: str | None = None
    hashed_password: str | None = None  # None = Google-only account
    status: str = AccountStatus.active.value
    oauth_provider: str | None = None  # "google"
    oauth_subject: str | None = None  # provider's stable user ID
    oauth_email_verified: bool = False
    created_at: datetime | None = None
    last_login: datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.active.value


@dataclass
class AuthSession:
    """One refresh session. The raw refresh token is never part of this record.

    Rotation overwrites refresh_token_hash and expires_at on the same row, so
    there is at most one live hash per session id.
    """

    user_id: str
    refresh_token_hash: str  # SHA-256 hex of the current raw token
    expires_at: datetime
    id: str | None = None
    user_agent: str | None = None  # audit only, truncated to 256 chars
    ip_hash: str | None = None  # audit only, SHA-256 of client IP
    created_at: datetime | None = None
    revoked_at: datetime | None = None  # None = active; set = terminal

    def is_live(self, now: datetime) -> bool:
        return self.revoked_at is None and self.expires_at > now


@dataclass(frozen=True)
class SessionContext:
    """Request metadata recorded on a session for audit purposes."""

    user_agent: str | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class IssuedSession:
    """Returned by the session store: the raw token exists only here, outside storage."""

    session_id: str
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True)
class AuthResult:
    """Credential triple handed back to the boundary layer after any successful flow."""

    user: User
    access_token: str
    refresh_token: str
    expires_at: datetime


@dataclass(frozen=True)
class GoogleAuthorization:
    """One authorize-leg attempt: the URL to send the browser to, plus the
    state/verifier pair the caller must hold until the callback arrives."""

    authorization_url: str
    state: str
    code_verifier: str
    redirect_uri: str


@dataclass(frozen=True)
class GoogleProfile:
    """Normalized identity returned by the Google token + userinfo exchange."""

    subject: str
    issuer: str
    email: str  # lowercased
    email_verified: bool
    full_name: str

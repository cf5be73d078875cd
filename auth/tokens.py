"""
auth/tokens.py -- Access token issuance and password credential primitives.

What this module guarantees:
  JWT: python-jose with HS256. Access tokens are short-lived (15 minutes by
       default), signed with SECRET_KEY and carry sub (user id), role, iss,
       aud, iat and exp. Verification returns None on any failure -- the
       dependency layer turns that into a 401. Long-lived state lives in the
       refresh session (auth/sessions.py), never in the access token.

  Passwords: bcrypt, used directly. The _DUMMY_HASH constant enables timing
       equalization in verify_credential() so response time does not reveal
       whether an email is registered [C1].

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup (dev auto-generates, production refuses to start, <32 chars
       rejected) [M6].

Layer rule: no imports from api/. Import from core/ is allowed -- core/ is the
kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User

logger = logging.getLogger("coursework.auth")

# ---------------------------------------------------------------------------
# Settings are read once, at import [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Passwords (plain bcrypt)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Hash a password with bcrypt at the configured work factor.

    bcrypt only reads the first 72 bytes. The request schema caps passwords at
    128 characters, and anything past byte 72 simply does not contribute.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=_settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Compare a password with a stored bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash -- treat as a mismatch, never as a match.
        logger.warning("Stored password hash is malformed")
        return False


# Stand-in hash checked when there is no real one [C1]. Built at import so
# the first failed sign-in costs the same as every later one.
_DUMMY_HASH: str = hash_password("coursework_timing_dummy")


def verify_credential(user: User | None, password: str) -> bool:
    """Check a password against an account with timing equalization [C1].

    Always runs bcrypt, whether or not the account exists or has a password:
    - Unknown email / Google-only account: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash
    Both cost the same, so response time cannot be used to enumerate accounts.
    """
    if user is None or user.hashed_password is None:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, user.hashed_password)


# ---------------------------------------------------------------------------
# Access tokens (HS256 JWT)
# ---------------------------------------------------------------------------


def create_access_token(user_id: str, role: str, expire_seconds: int = 0) -> str:
    """Encode a signed access token for user_id with the given role.

    Args:
        user_id:        Account id, stored as the sub claim.
        role:           "admin", "teacher" or "student".
        expire_seconds: Lifetime in seconds. If 0 (default), uses
                        Settings.access_token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "role": role,
        "iss": _settings.token_issuer,
        "aud": _settings.token_audience,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access token. Returns the claims dict or None on any failure."""
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[ALGORITHM],
            audience=_settings.token_audience,
            issuer=_settings.token_issuer,
        )
    except JWTError:
        return None
    if "sub" not in payload or "role" not in payload:
        return None
    return payload

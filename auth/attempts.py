"""
auth/attempts.py -- Signed, time-boxed carrier for a pending Google sign-in attempt.

The authorize leg produces {state, code_verifier, redirect_uri}; the callback
leg needs all three back. Rather than trusting a server-side cache or a
framework session, the triple is packed into an HS256 JWT (python-jose, same
SECRET_KEY as access tokens) that the boundary layer stores in an httpOnly
cookie scoped to the Google routes.

  typ = "oauth_attempt" -- an access token can never be replayed as an attempt
  exp = now + oauth_attempt_ttl_seconds (5 minutes by default)

The cookie is httpOnly, so the verifier is not readable by page scripts. It
is signed, not encrypted: the browser holds its own PKCE secret, which is the
same trust model as a public OAuth client.

decode_attempt() returns None for anything that is not a valid, unexpired
attempt. The callback treats None exactly like a state mismatch.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import GoogleAuthorization
from auth.tokens import ALGORITHM
from core.config import get_settings

_settings = get_settings()

ATTEMPT_TOKEN_TYPE = "oauth_attempt"  # noqa: S105 -- claim value, not a password


def encode_attempt(attempt: GoogleAuthorization, ttl_seconds: int = 0) -> str:
    """Sign the state/verifier/redirect triple of attempt for the callback leg."""
    duration = ttl_seconds if ttl_seconds != 0 else _settings.oauth_attempt_ttl_seconds
    payload = {
        "typ": ATTEMPT_TOKEN_TYPE,
        "state": attempt.state,
        "cv": attempt.code_verifier,
        "ru": attempt.redirect_uri,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=ALGORITHM)


def decode_attempt(token: str | None) -> GoogleAuthorization | None:
    """Verify and unpack an attempt token. Returns None when missing, tampered or expired."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != ATTEMPT_TOKEN_TYPE:
        return None
    state, verifier, redirect_uri = payload.get("state"), payload.get("cv"), payload.get("ru")
    if not isinstance(state, str) or not isinstance(verifier, str) or not isinstance(redirect_uri, str):
        return None
    return GoogleAuthorization(authorization_url="", state=state, code_verifier=verifier, redirect_uri=redirect_uri)

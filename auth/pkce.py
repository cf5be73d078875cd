"""
auth/pkce.py -- OAuth state and PKCE (RFC 7636) generation/validation for Google sign-in.

One authorization attempt moves through:
  1. generate_state()               -- CSRF binding value, echoed back on callback
  2. generate_pkce_code_verifier()  -- client-held secret, 43..128 chars
  3. derive_pkce_code_challenge()   -- S256 only; "plain" is never offered, so
                                       the exchange cannot be downgraded
  4. build_google_authorization_url()
  5. assert_valid_code_verifier()   -- on callback, before the code exchange

Nothing here persists the state/verifier pair. The caller carries it between
the two legs (see auth/attempts.py for the signed cookie form).

Layer rule: imports only stdlib and other auth/ modules.
"""

from __future__ import annotations

import hashlib
import secrets
from urllib.parse import urlencode, urlsplit

from auth.crypto import base64url_encode
from auth.errors import AuthenticationError, ConfigurationError
from auth.models import GoogleAuthorization

GOOGLE_AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_SCOPE = "openid email profile"

PKCE_CODE_VERIFIER_MIN_LENGTH = 43
PKCE_CODE_VERIFIER_MAX_LENGTH = 128


def generate_state() -> str:
    return base64url_encode(secrets.token_bytes(32))


def generate_pkce_code_verifier() -> str:
    """Return a verifier whose length is forced into [43, 128].

    32 random bytes encode to exactly 43 characters, so the padding branch
    only guards against a future change of the byte count. Truncation to the
    maximum is a normalization step; entropy already exceeds the minimum.
    """
    verifier = base64url_encode(secrets.token_bytes(32))
    if len(verifier) < PKCE_CODE_VERIFIER_MIN_LENGTH:
        additional = base64url_encode(secrets.token_bytes(48))
        verifier = f"{verifier}{additional}"[:PKCE_CODE_VERIFIER_MIN_LENGTH]
    if len(verifier) > PKCE_CODE_VERIFIER_MAX_LENGTH:
        verifier = verifier[:PKCE_CODE_VERIFIER_MAX_LENGTH]
    return verifier


def derive_pkce_code_challenge(verifier: str) -> str:
    """base64url(SHA-256(verifier)) -- the S256 challenge method.

    Verifiers are ASCII by construction, where UTF-8 gives the same bytes; any
    other input is hashed as UTF-8 rather than rejected here.
    """
    return base64url_encode(hashlib.sha256(verifier.encode("utf-8")).digest())


def assert_valid_redirect_uri(redirect_uri: str | None) -> str:
    """Fail fast with a ConfigurationError unless redirect_uri is an absolute URL.

    A bad redirect URI is an operator mistake, not a user error, so it is
    classified as a 500 and the detail stays in the server log.
    """
    if not redirect_uri:
        raise ConfigurationError("Google redirect URI is not configured for this environment.")
    try:
        parts = urlsplit(redirect_uri)
    except ValueError as exc:
        raise ConfigurationError("Google redirect URI is invalid. Check the server configuration.") from exc
    if not parts.scheme or not parts.netloc:
        raise ConfigurationError("Google redirect URI is invalid. Check the server configuration.")
    return redirect_uri


def assert_valid_code_verifier(code_verifier: str | None) -> str:
    """Reject a missing or out-of-range verifier (tampered or expired attempt record)."""
    if (
        not code_verifier
        or len(code_verifier) < PKCE_CODE_VERIFIER_MIN_LENGTH
        or len(code_verifier) > PKCE_CODE_VERIFIER_MAX_LENGTH
    ):
        raise AuthenticationError(
            "Google sign-in verifier is invalid or expired. Please try again.",
            code="invalid_verifier",
            status_code=400,
        )
    return code_verifier


def build_google_authorization_url(redirect_uri: str | None, client_id: str) -> GoogleAuthorization:
    """Build the Google consent URL for a new attempt.

    The redirect URI is validated before any random material is generated so a
    misconfigured deployment fails without producing a half-built attempt.
    """
    redirect_uri = assert_valid_redirect_uri(redirect_uri)
    if not client_id:
        raise ConfigurationError("Google client ID is not configured for this environment.")

    state = generate_state()
    code_verifier = generate_pkce_code_verifier()
    code_challenge = derive_pkce_code_challenge(code_verifier)

    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": GOOGLE_SCOPE,
        "access_type": "offline",
        "include_granted_scopes": "true",
        "state": state,
        "code_challenge": code_challenge,
        "code_challenge_method": "S256",
        "prompt": "select_account",
    }
    return GoogleAuthorization(
        authorization_url=f"{GOOGLE_AUTHORIZATION_ENDPOINT}?{urlencode(params)}",
        state=state,
        code_verifier=code_verifier,
        redirect_uri=redirect_uri,
    )

"""
auth/crypto.py -- Small cryptographic helpers shared by the auth flows.

hash_value() is SHA-256, not bcrypt. It protects high-entropy values (refresh
tokens, 384 bits) and audit-only values (client IPs) where a deterministic
digest is required for O(1) lookup by hash. Passwords never go through here;
see auth/tokens.py for bcrypt.

Layer rule: stdlib only.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

_REFRESH_TOKEN_BYTES = 48


def base64url_encode(data: bytes) -> str:
    """Standard base64 with '+' -> '-', '/' -> '_' and trailing '=' stripped."""
    return base64.b64encode(data).decode("ascii").replace("+", "-").replace("/", "_").rstrip("=")


def timing_safe_match(first: str, second: str) -> bool:
    """Compare two strings in constant time.

    The length check returns early on purpose: lengths of state values and
    token hashes are not secret, only their contents are.
    """
    first_bytes = first.encode("utf-8")
    second_bytes = second.encode("utf-8")
    if len(first_bytes) != len(second_bytes):
        return False
    return hmac.compare_digest(first_bytes, second_bytes)


def hash_value(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def generate_refresh_token() -> str:
    """Return a new opaque refresh token (48 random bytes, urlsafe base64, no padding)."""
    return base64url_encode(secrets.token_bytes(_REFRESH_TOKEN_BYTES))

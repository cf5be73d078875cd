"""
tests/test_tokens.py -- Unit tests for access tokens and password primitives.

Covers:
  - create_access_token / decode_access_token round trip (sub, role, iss, aud)
  - Expired, foreign-audience, foreign-issuer and tampered tokens decode to None
  - bcrypt hash/verify, malformed stored hash never matches
  - verify_credential runs bcrypt even with no account (timing equalization)
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from jose import jwt

from auth.models import User
from auth.tokens import (
    ALGORITHM,
    create_access_token,
    decode_access_token,
    hash_password,
    verify_credential,
    verify_password,
)
from core.config import get_settings


def _encode(**overrides) -> str:
    settings = get_settings()
    now = datetime.now(timezone.utc)
    claims = {
        "sub": "user-1",
        "role": "teacher",
        "iss": settings.token_issuer,
        "aud": settings.token_audience,
        "iat": now,
        "exp": now + timedelta(minutes=5),
    }
    claims.update(overrides)
    return jwt.encode(claims, settings.secret_key, algorithm=ALGORITHM)


class TestAccessToken:
    def test_round_trip(self) -> None:
        payload = decode_access_token(create_access_token("user-1", "teacher"))
        assert payload is not None
        assert payload["sub"] == "user-1"
        assert payload["role"] == "teacher"
        assert payload["iss"] == get_settings().token_issuer

    def test_default_lifetime(self) -> None:
        payload = decode_access_token(create_access_token("user-1", "student"))
        assert payload["exp"] - payload["iat"] == get_settings().access_token_expire_seconds

    def test_expired_token(self) -> None:
        past = datetime.now(timezone.utc) - timedelta(minutes=1)
        assert decode_access_token(_encode(exp=past)) is None

    def test_wrong_audience(self) -> None:
        assert decode_access_token(_encode(aud="another-app")) is None

    def test_wrong_issuer(self) -> None:
        assert decode_access_token(_encode(iss="someone-else")) is None

    def test_missing_role(self) -> None:
        token = _encode()
        claims = jwt.get_unverified_claims(token)
        claims.pop("role")
        assert decode_access_token(jwt.encode(claims, get_settings().secret_key, algorithm=ALGORITHM)) is None

    def test_foreign_key(self) -> None:
        token = jwt.encode(jwt.get_unverified_claims(_encode()), "x" * 40, algorithm=ALGORITHM)
        assert decode_access_token(token) is None

    def test_garbage(self) -> None:
        assert decode_access_token("not-a-jwt") is None


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert verify_password("s3cret-pass", hashed)
        assert not verify_password("wrong-pass", hashed)

    def test_malformed_hash_is_mismatch(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False


class TestVerifyCredential:
    def test_unknown_account_still_runs_bcrypt(self) -> None:
        with patch("auth.tokens.bcrypt.checkpw", return_value=True) as checkpw:
            assert verify_credential(None, "whatever") is False
        checkpw.assert_called_once()

    def test_google_only_account_never_matches(self) -> None:
        user = User(email="g@example.edu", full_name="G", hashed_password=None)
        with patch("auth.tokens.bcrypt.checkpw", return_value=True) as checkpw:
            assert verify_credential(user, "whatever") is False
        checkpw.assert_called_once()

    def test_real_account(self) -> None:
        user = User(email="p@example.edu", full_name="P", hashed_password=hash_password("right-pass"))
        assert verify_credential(user, "right-pass") is True
        assert verify_credential(user, "wrong-pass") is False

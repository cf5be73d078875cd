"""
tests/test_password_flow.py -- Password login and registration flows.

Covers:
  - Successful login returns access token, refresh token and expiry; session persisted
  - Unknown email, wrong password and Google-only account fail identically
  - Suspended account: 403 only after the password matched
  - last_login is stamped on success
  - Registration creates an active account, signs it in, rejects duplicates (409)
  - Session expiry on login is now + 14 days
  - bcrypt work runs off the event loop for both login and registration
"""

from __future__ import annotations

import asyncio
import time

import pytest

import auth.password
from auth.crypto import hash_value
from auth.db import utcnow
from auth.errors import AUTH_ERROR, AccountInactiveError, AuthenticationError, ConflictError
from auth.models import SessionContext, User
from auth.password import handle_password_login, handle_register_account
from auth.sessions import REFRESH_TOKEN_TTL
from auth.tokens import decode_access_token

PASSWORD = "correct-horse-battery"
CONTEXT = SessionContext(user_agent="pytest", ip_address="198.51.100.4")


class TestPasswordLogin:
    @pytest.mark.asyncio
    async def test_success(self, user_store, session_store, make_user) -> None:
        user = await make_user(user_store, "student@example.edu", role="teacher")

        result = await handle_password_login(user_store, session_store, "student@example.edu", PASSWORD, CONTEXT)

        assert result.user.id == user.id
        payload = decode_access_token(result.access_token)
        assert payload["sub"] == user.id
        assert payload["role"] == "teacher"
        session = await session_store.find_active_session(hash_value(result.refresh_token))
        assert session is not None
        assert session.user_id == user.id
        assert session.expires_at == result.expires_at

    @pytest.mark.asyncio
    async def test_stamps_last_login(self, user_store, session_store, make_user) -> None:
        user = await make_user(user_store, "student@example.edu")
        assert user.last_login is None
        await handle_password_login(user_store, session_store, "student@example.edu", PASSWORD, CONTEXT)
        assert (await user_store.get_by_id(user.id)).last_login is not None

    @pytest.mark.asyncio
    async def test_email_case_is_ignored(self, user_store, session_store, make_user) -> None:
        await make_user(user_store, "student@example.edu")
        result = await handle_password_login(user_store, session_store, "Student@Example.EDU", PASSWORD, CONTEXT)
        assert result.user.email == "student@example.edu"

    @pytest.mark.asyncio
    async def test_failures_are_indistinguishable(self, user_store, session_store, make_user) -> None:
        await make_user(user_store, "student@example.edu")
        await user_store.create_user(User(email="google.only@example.edu", full_name="G", oauth_provider="google"))

        errors = []
        for email, password in [
            ("nobody@example.edu", PASSWORD),
            ("student@example.edu", "wrong-password"),
            ("google.only@example.edu", PASSWORD),
        ]:
            with pytest.raises(AuthenticationError) as exc_info:
                await handle_password_login(user_store, session_store, email, password, CONTEXT)
            errors.append(exc_info.value)

        assert {e.message for e in errors} == {AUTH_ERROR}
        assert {e.code for e in errors} == {"bad_credentials"}
        assert {e.status_code for e in errors} == {401}

    @pytest.mark.asyncio
    async def test_failure_creates_no_session(self, user_store, session_store, make_user) -> None:
        user = await make_user(user_store, "student@example.edu")
        with pytest.raises(AuthenticationError):
            await handle_password_login(user_store, session_store, "student@example.edu", "nope-nope", CONTEXT)
        assert await session_store.list_active_sessions(user.id) == []

    @pytest.mark.asyncio
    async def test_suspended_account(self, user_store, session_store, make_user) -> None:
        await make_user(user_store, "held@example.edu", status="suspended")

        with pytest.raises(AccountInactiveError) as exc_info:
            await handle_password_login(user_store, session_store, "held@example.edu", PASSWORD, CONTEXT)
        assert exc_info.value.status_code == 403

        # Wrong password on a suspended account must not reveal the suspension.
        with pytest.raises(AuthenticationError):
            await handle_password_login(user_store, session_store, "held@example.edu", "wrong-password", CONTEXT)


class TestRegister:
    @pytest.mark.asyncio
    async def test_creates_and_signs_in(self, user_store, session_store) -> None:
        result = await handle_register_account(
            user_store, session_store, "new@example.edu", "fresh-password", "  New Person ", "student", CONTEXT
        )
        stored = await user_store.get_by_email("new@example.edu")
        assert stored is not None
        assert stored.id == result.user.id
        assert stored.full_name == "New Person"
        assert stored.is_active
        assert stored.hashed_password != "fresh-password"
        assert decode_access_token(result.access_token)["role"] == "student"

        login = await handle_password_login(user_store, session_store, "new@example.edu", "fresh-password", CONTEXT)
        assert login.user.id == stored.id

    @pytest.mark.asyncio
    async def test_role_is_kept(self, user_store, session_store) -> None:
        result = await handle_register_account(
            user_store, session_store, "t@example.edu", "fresh-password", "Teacher", "teacher", CONTEXT
        )
        assert result.user.role == "teacher"

    @pytest.mark.asyncio
    async def test_duplicate_email(self, user_store, session_store, make_user) -> None:
        await make_user(user_store, "taken@example.edu")
        with pytest.raises(ConflictError) as exc_info:
            await handle_register_account(
                user_store, session_store, "taken@example.edu", "fresh-password", "Other", "student", CONTEXT
            )
        assert exc_info.value.status_code == 409

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_registration(self, user_store, session_store) -> None:
        results = await asyncio.gather(
            *[
                handle_register_account(
                    user_store, session_store, "race@example.edu", "fresh-password", "Racer", "student", CONTEXT
                )
                for _ in range(2)
            ],
            return_exceptions=True,
        )
        successes = [r for r in results if not isinstance(r, BaseException)]
        conflicts = [r for r in results if isinstance(r, ConflictError)]
        assert len(successes) == 1
        assert len(conflicts) == 1
        assert await user_store.count_users() == 1


class TestSessionExpiry:
    @pytest.mark.asyncio
    async def test_login_session_expires_in_fourteen_days(self, user_store, session_store, make_user) -> None:
        await make_user(user_store, "student@example.edu")
        result = await handle_password_login(user_store, session_store, "student@example.edu", PASSWORD, CONTEXT)
        drift = abs((result.expires_at - (utcnow() + REFRESH_TOKEN_TTL)).total_seconds())
        assert drift <= 5


async def _longest_loop_pause(coro) -> float:
    """Await coro while a 5 ms ticker runs; return the longest gap between ticks."""
    loop = asyncio.get_running_loop()
    finished = asyncio.Event()
    gaps: list[float] = []

    async def ticker() -> None:
        last = loop.time()
        while not finished.is_set():
            await asyncio.sleep(0.005)
            now = loop.time()
            gaps.append(now - last)
            last = now

    task = asyncio.create_task(ticker())
    try:
        await coro
    finally:
        finished.set()
        await task
    return max(gaps)


class TestEventLoopResponsiveness:
    # Stand-ins hold the thread for 300 ms, like a slow bcrypt round.

    @pytest.mark.asyncio
    async def test_login_does_not_block_loop(self, user_store, session_store, make_user, monkeypatch) -> None:
        await make_user(user_store, "student@example.edu")
        real_verify = auth.password.verify_credential

        def slow_verify(user, password):
            time.sleep(0.3)
            return real_verify(user, password)

        monkeypatch.setattr(auth.password, "verify_credential", slow_verify)
        pause = await _longest_loop_pause(
            handle_password_login(user_store, session_store, "student@example.edu", PASSWORD, CONTEXT)
        )
        assert pause < 0.15

    @pytest.mark.asyncio
    async def test_register_does_not_block_loop(self, user_store, session_store, monkeypatch) -> None:
        real_hash = auth.password.hash_password

        def slow_hash(password):
            time.sleep(0.3)
            return real_hash(password)

        monkeypatch.setattr(auth.password, "hash_password", slow_hash)
        pause = await _longest_loop_pause(
            handle_register_account(
                user_store, session_store, "new@example.edu", "long-enough-pw", "New", "student", CONTEXT
            )
        )
        assert pause < 0.15

"""
auth/password.py -- Password login and account registration flows.

Login failures are uniform: an unknown email, a Google-only account and a
wrong password all raise the same AuthenticationError with the same message,
after the same bcrypt work (see verify_credential). Only once the password
has matched do we reveal that an account is suspended -- the caller has
already proven they own it.

bcrypt is CPU-bound, so both flows hand it to the threadpool and the event
loop keeps serving other requests meanwhile.

Input shape (email format, password length, role enumeration) is validated by
the request schema in api/models.py and is not re-checked here.
"""

from __future__ import annotations

import logging

from fastapi.concurrency import run_in_threadpool
from sqlalchemy.exc import IntegrityError

from auth.errors import AUTH_ERROR, AuthenticationError, ConflictError
from auth.models import AuthResult, Role, SessionContext, User
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.tokens import hash_password, verify_credential
from auth.users import assert_active, start_session

logger = logging.getLogger("coursework.auth.password")

_DUPLICATE_ACCOUNT = "An account with that email already exists."


async def handle_password_login(
    users: UserStore,
    sessions: SessionStore,
    email: str,
    password: str,
    context: SessionContext,
) -> AuthResult:
    """Validate credentials and issue a new session."""
    user = await users.get_by_email(email)
    if not await run_in_threadpool(verify_credential, user, password):
        logger.info("Password login failed")
        raise AuthenticationError(AUTH_ERROR, code="bad_credentials")

    assert_active(user)
    result = await start_session(users, sessions, user, context)
    logger.info("Password login succeeded for user %s", user.id)
    return result


async def handle_register_account(
    users: UserStore,
    sessions: SessionStore,
    email: str,
    password: str,
    full_name: str,
    role: str,
    context: SessionContext,
) -> AuthResult:
    """Create an active password account and sign it in.

    The pre-check gives a clean 409 in the common case; the IntegrityError
    branch covers two concurrent registrations for the same email where both
    pass the pre-check and the unique index rejects the second insert.
    """
    if await users.get_by_email(email) is not None:
        raise ConflictError(_DUPLICATE_ACCOUNT)

    user = User(
        email=email,
        full_name=full_name.strip(),
        role=Role(role).value,
        hashed_password=await run_in_threadpool(hash_password, password),
    )
    try:
        user.id = await users.create_user(user)
    except IntegrityError as exc:
        raise ConflictError(_DUPLICATE_ACCOUNT) from exc

    created = await users.get_by_id(user.id)
    logger.info("Registered account %s (role=%s)", created.id, created.role)
    return await start_session(users, sessions, created, context)

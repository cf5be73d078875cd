"""
auth/google.py -- Google sign-in orchestration: authorize leg and callback leg.

Authorize leg: build the consent URL with a fresh state and PKCE pair. This
module stores nothing; the caller carries the attempt to the callback (the
HTTP layer uses the signed cookie from auth/attempts.py).

Callback leg, in order:
  1. code/state presence
  2. state compared in constant time against the stored attempt (CSRF binding);
     a missing or expired attempt counts as a mismatch
  3. stored redirect URI re-checked (misconfiguration is a 500, not a user error)
  4. verifier shape (tampered / expired attempt record)
  5. code + verifier + redirect URI exchanged at Google
  6. verified email required [H1]
  7. identity resolved to a local account (see resolve_google_account)
  8. account must be active
  9. session issued exactly like password login

Auto-provisioning policy: when a verified Google email matches no local
account, the callback rejects the sign-in unless auto_provision is True, in
which case an active student account is created and linked.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError

from auth.crypto import timing_safe_match
from auth.errors import AuthenticationError, ValidationError
from auth.models import AuthResult, GoogleAuthorization, GoogleProfile, Role, SessionContext, User
from auth.oauth import GOOGLE_PROVIDER, GoogleIdentityClient
from auth.pkce import assert_valid_code_verifier, assert_valid_redirect_uri, build_google_authorization_url
from auth.sessions import SessionStore
from auth.store import UserStore
from auth.users import assert_active, start_session

logger = logging.getLogger("coursework.auth.google")

_STATE_ERROR = "Google sign-in state is invalid or expired. Please try again."


def start_google_authorization(redirect_uri: str | None, client_id: str) -> GoogleAuthorization:
    """Authorize leg. Raises ConfigurationError before generating anything if redirect_uri is bad."""
    return build_google_authorization_url(redirect_uri, client_id)


async def complete_google_authorization(
    users: UserStore,
    sessions: SessionStore,
    identity_client: GoogleIdentityClient,
    code: str | None,
    state: str | None,
    attempt: GoogleAuthorization | None,
    context: SessionContext,
    auto_provision: bool = False,
) -> AuthResult:
    """Callback leg. attempt is the stored {state, code_verifier, redirect_uri}, or None if lost."""
    if not code or not state:
        raise ValidationError("Google sign-in response is missing the code or state parameter.")

    if attempt is None or not attempt.state or not timing_safe_match(attempt.state, state):
        logger.warning("Google callback rejected: state mismatch")
        raise AuthenticationError(_STATE_ERROR, code="invalid_state", status_code=400)

    redirect_uri = assert_valid_redirect_uri(attempt.redirect_uri)
    code_verifier = assert_valid_code_verifier(attempt.code_verifier)

    profile = await identity_client.exchange_code(code, code_verifier, redirect_uri)
    if not profile.email_verified:
        raise AuthenticationError(
            "Google account email must be verified before signing in.",
            code="unverified_email",
            status_code=400,
        )

    user = await resolve_google_account(users, profile, auto_provision)
    assert_active(user)

    result = await start_session(users, sessions, user, context)
    logger.info("Google sign-in succeeded for user %s", user.id)
    return result


async def resolve_google_account(users: UserStore, profile: GoogleProfile, auto_provision: bool) -> User:
    """Map a verified Google profile to a local account.

    Lookup order: linked (provider, subject) -> same email (link it) ->
    provision (only when allowed). A unique-constraint race during
    provisioning falls back to linking the account that won the race.
    """
    user = await users.get_by_oauth(GOOGLE_PROVIDER, profile.subject)
    if user is not None:
        if not user.oauth_email_verified:
            await users.mark_oauth_email_verified(user.id)
            user.oauth_email_verified = True
        return user

    user = await users.get_by_email(profile.email)
    if user is not None:
        return await _link(users, user, profile)

    if not auto_provision:
        logger.info("Google sign-in rejected: no account for verified email")
        raise AuthenticationError(
            "No account is registered for this Google email. Contact your administrator.",
            code="account_not_found",
        )

    new_user = User(
        email=profile.email,
        full_name=profile.full_name,
        role=Role.student.value,
        oauth_provider=GOOGLE_PROVIDER,
        oauth_subject=profile.subject,
        oauth_email_verified=profile.email_verified,
    )
    try:
        user_id = await users.create_user(new_user)
    except IntegrityError:
        existing = await users.get_by_email(profile.email)
        if existing is None:
            raise
        return await _link(users, existing, profile)

    logger.info("Provisioned student account %s from Google sign-in", user_id)
    return await users.get_by_id(user_id)


async def _link(users: UserStore, user: User, profile: GoogleProfile) -> User:
    assert_active(user)
    await users.link_oauth(user.id, GOOGLE_PROVIDER, profile.subject, profile.email_verified)
    logger.info("Linked Google identity (issuer %s) to user %s", profile.issuer, user.id)
    return await users.get_by_id(user.id)

"""
auth/errors.py -- Typed error taxonomy for the authentication core.

Every failure a flow can produce is an AuthError subclass carrying:
  status_code -- HTTP-equivalent classification chosen by the flow
  code        -- stable machine-readable identifier (e.g. "invalid_session")
  message     -- client-safe text; never names which credential was wrong
  expose      -- True for 4xx. 5xx messages are replaced by a generic one at
                 the boundary and only written to the server log.

Storage failures are NOT wrapped here. sqlalchemy.exc.SQLAlchemyError
propagates unchanged and the API layer maps it to a generic 500, so a flow
can never accidentally classify a database outage as a bad password.

Layer rule: stdlib only.
"""

from __future__ import annotations

AUTH_ERROR = "Invalid email or password."
SESSION_ERROR = "Refresh token is invalid or expired."


class AuthError(Exception):
    """Base class for all auth-core failures."""

    status_code: int = 400
    code: str = "auth_error"

    def __init__(self, message: str, *, code: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code

    @property
    def expose(self) -> bool:
        return self.status_code < 500

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, status_code={self.status_code})"


class ConfigurationError(AuthError):
    """Server misconfiguration (missing redirect URI, missing client id). Fatal, not retried."""

    status_code = 500
    code = "configuration_error"


class ValidationError(AuthError):
    """Malformed input that slipped past the request schema (e.g. empty callback code)."""

    status_code = 400
    code = "validation_error"


class AuthenticationError(AuthError):
    """Uniform authentication failure: bad credentials, bad session, bad state/verifier."""

    status_code = 401
    code = "authentication_failed"


class AccountInactiveError(AuthError):
    status_code = 403
    code = "account_inactive"

    def __init__(self, message: str = "Account is not active. Contact support for assistance.") -> None:
        super().__init__(message)


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"


class UpstreamAuthError(AuthError):
    """The identity provider rejected the exchange or could not be reached.

    Safe to retry by restarting the authorize leg; never by replaying the
    same authorization code.
    """

    status_code = 401
    code = "oauth_failed"

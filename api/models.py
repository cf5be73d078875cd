"""
API request and response models for the auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Input shape (email format, password length, role enumeration) is validated
here once; the auth flows do not repeat these checks.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 128


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    admin = "admin"
    teacher = "teacher"
    student = "student"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class _EmailNormalizingModel(BaseModel):
    @field_validator("email", mode="before", check_fields=False)
    @classmethod
    def normalize_email(cls, value: object) -> object:
        """Strip and lowercase before the pattern check so ' A@B.edu ' is accepted as 'a@b.edu'."""
        if isinstance(value, str):
            return value.strip().lower()
        return value


class LoginRequest(_EmailNormalizingModel):
    """Request body for POST /api/v1/auth/login.

    Password has no minimum beyond non-empty: accounts created before a policy
    change must still be able to sign in.
    """

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class RegisterRequest(_EmailNormalizingModel):
    """Request body for POST /api/v1/auth/register."""

    email: str = Field(max_length=320, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=PASSWORD_MIN_LENGTH, max_length=PASSWORD_MAX_LENGTH)
    full_name: str = Field(min_length=1, max_length=255)
    role: RoleEnum = RoleEnum.student

    @field_validator("full_name")
    @classmethod
    def full_name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Full name is required")
        return value.strip()


class SessionTokenRequest(BaseModel):
    """Optional body for POST /auth/refresh and POST /auth/logout.

    Browsers send the refresh token as the httpOnly cookie and leave the body
    empty; other clients may post it here instead. The cookie wins when both
    are present.
    """

    refresh_token: Optional[str] = Field(default=None, max_length=512)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserInfo(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    full_name: str
    role: str


class AuthResponse(BaseModel):
    """Credential triple returned by login, register, refresh and Google callback."""

    model_config = ConfigDict(frozen=True)

    user: UserInfo
    access_token: str
    token_type: str = "bearer"
    refresh_token: str
    expires_at: datetime


class GoogleAuthorizeResponse(BaseModel):
    """Response for GET /api/v1/auth/google.

    state and code_verifier are returned for clients that keep the attempt
    themselves; browser clients can ignore them because the same values are
    also set in the signed attempt cookie.
    """

    model_config = ConfigDict(frozen=True)

    authorization_url: str
    state: str
    code_verifier: str


class MeResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: str
    email: str
    full_name: str
    role: str
    oauth_provider: Optional[str] = None


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health.

    status is "healthy" when every component reports "ok", else "degraded".
    """

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]

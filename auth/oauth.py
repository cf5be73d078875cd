"""
auth/oauth.py -- Google identity-provider client (authorization code + PKCE exchange).

Uses authlib's AsyncOAuth2Client (httpx transport) for the token request, so
client authentication (client_secret_post) and token-response error parsing
follow authlib rather than hand-built form posts.

Security notes:
  [H1] Email verification is mandatory. The profile carries email_verified and
       the Google flow rejects unverified addresses -- an unverified email could
       be a victim's address attached to an attacker's Google account.

  The id_token is read with python-jose's get_unverified_claims(). It was
  received directly from Google's token endpoint over TLS in response to our
  own authenticated request, so signature verification would not add a trust
  anchor here. The claims are still checked: aud must contain our client id,
  iss must be a Google issuer, and sub must equal the userinfo sub.

  Every provider or network failure becomes UpstreamAuthError with a
  client-safe message. The provider's raw response is logged, never returned.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

import httpx
from authlib.integrations.base_client import OAuthError
from authlib.integrations.httpx_client import AsyncOAuth2Client
from jose import JWTError, jwt

from auth.errors import AuthenticationError, ConfigurationError, UpstreamAuthError
from auth.models import GoogleProfile
from core.config import Settings

logger = logging.getLogger("coursework.auth.oauth")

GOOGLE_PROVIDER = "google"
GOOGLE_TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"  # noqa: S105 -- URL, not a password
GOOGLE_USERINFO_ENDPOINT = "https://openidconnect.googleapis.com/v1/userinfo"
GOOGLE_ALLOWED_ISSUERS = frozenset({"https://accounts.google.com", "accounts.google.com"})


class GoogleIdentityClient:
    """Exchanges an authorization code for a normalized GoogleProfile.

    One AsyncOAuth2Client is opened per exchange and closed afterwards; the
    instance itself holds only configuration and is safe to share across
    requests.

    transport is for tests (httpx.MockTransport); production leaves it None.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> GoogleIdentityClient:
        return cls(
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            timeout=settings.google_http_timeout_seconds,
        )

    def _open(self) -> AsyncOAuth2Client:
        kwargs: dict = {"timeout": self.timeout}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return AsyncOAuth2Client(
            client_id=self.client_id,
            client_secret=self.client_secret,
            token_endpoint_auth_method="client_secret_post",
            **kwargs,
        )

    async def exchange_code(self, code: str, code_verifier: str, redirect_uri: str) -> GoogleProfile:
        """Redeem code (+ PKCE verifier) at Google and return the caller's verified profile.

        Raises:
            ConfigurationError: client id or secret is not configured.
            UpstreamAuthError:  Google rejected the code or could not be reached.
            AuthenticationError: the returned identity failed a claim check.
        """
        if not self.client_id or not self.client_secret:
            raise ConfigurationError("Google OAuth credentials are not configured for this environment.")

        async with self._open() as client:
            token = await self._fetch_token(client, code, code_verifier, redirect_uri)
            claims = self._read_id_token(token["id_token"])
            userinfo = await self._fetch_userinfo(client, token["access_token"])

        return _build_profile(claims, userinfo)

    async def _fetch_token(self, client: AsyncOAuth2Client, code: str, code_verifier: str, redirect_uri: str) -> dict:
        try:
            token = await client.fetch_token(
                GOOGLE_TOKEN_ENDPOINT,
                grant_type="authorization_code",
                code=code,
                code_verifier=code_verifier,
                redirect_uri=redirect_uri,
            )
        except OAuthError as exc:
            logger.warning("Google token exchange rejected: %s", exc.error)
            raise UpstreamAuthError("Unable to complete Google sign-in. Please try again.") from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Google token exchange failed: %s", exc)
            raise UpstreamAuthError("Unable to complete Google sign-in. Please try again.") from exc

        if (
            not token.get("access_token")
            or not token.get("id_token")
            or str(token.get("token_type", "")).lower() != "bearer"
        ):
            raise UpstreamAuthError("Google did not return the expected tokens. Please try again.")
        return dict(token)

    def _read_id_token(self, id_token: str) -> dict:
        try:
            claims = jwt.get_unverified_claims(id_token)
        except JWTError as exc:
            raise UpstreamAuthError("Unable to read Google identity token.") from exc

        audience = claims.get("aud")
        audiences = audience if isinstance(audience, list) else [audience]
        if self.client_id not in audiences:
            raise AuthenticationError("Google identity token audience mismatch detected.", code="invalid_id_token")
        if claims.get("iss") not in GOOGLE_ALLOWED_ISSUERS:
            raise AuthenticationError("Google identity token issuer is not trusted.", code="invalid_id_token")
        return claims

    async def _fetch_userinfo(self, client: AsyncOAuth2Client, access_token: str) -> dict:
        try:
            resp = await client.get(
                GOOGLE_USERINFO_ENDPOINT,
                headers={"Authorization": f"Bearer {access_token}"},
                withhold_token=True,
            )
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Google userinfo request failed: %s", exc)
            raise UpstreamAuthError("Unable to read Google account profile information.") from exc


def _build_profile(claims: dict, userinfo: dict) -> GoogleProfile:
    """Merge id_token claims and userinfo into a GoogleProfile.

    userinfo wins for email and name; either source may vouch for
    email_verified. The verified check itself is the caller's decision.
    """
    subject = userinfo.get("sub")
    if not subject or subject != claims.get("sub"):
        raise AuthenticationError(
            "Google identity token does not match profile information.", code="invalid_id_token"
        )

    email = userinfo.get("email") or claims.get("email")
    if not email:
        raise AuthenticationError(
            "Google account is missing an email address. Update your Google profile and try again.",
            code="missing_email",
            status_code=400,
        )
    email = email.strip().lower()

    return GoogleProfile(
        subject=subject,
        issuer=claims.get("iss") or "https://accounts.google.com",
        email=email,
        email_verified=userinfo.get("email_verified") is True or claims.get("email_verified") is True,
        full_name=_derive_full_name(userinfo, email),
    )


def _derive_full_name(userinfo: dict, email: str) -> str:
    name = (userinfo.get("name") or "").strip()
    if name:
        return name
    combined = f"{userinfo.get('given_name') or ''} {userinfo.get('family_name') or ''}".strip()
    if combined:
        return combined
    return email.split("@")[0]

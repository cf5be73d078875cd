"""
core/config.py -- Settings for the coursework auth service.

Every environment read in the service goes through this module; other code
asks get_settings() for values instead of touching os.environ.

How it is put together:
  Settings subclasses pydantic-settings BaseSettings, so each field is filled
  from the matching upper-case environment variable (database_url ->
  DATABASE_URL) or from a local .env file, with pydantic doing the coercion.

  get_settings() is wrapped in lru_cache. The first call builds Settings and
  every later call hands back that same object, which is also what FastAPI
  dependencies receive.

  A model_validator(mode="after") checks SECRET_KEY once every field is
  known: debug runs get a throwaway key and a warning, anything else stops
  at startup.

Security notes:
  [M6] Keys under 32 characters are refused. Access tokens and the signed
       Google attempt cookie are only as strong as this key.

  [M7] Outside debug mode there is no fallback key; the process exits
       instead of signing tokens with something guessable.

  Google credentials may be left empty. The Google routes then answer with a
  ConfigurationError (HTTP 500) while password sign-in carries on as usual.

Import rule: nothing under core/ imports from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("coursework.config")


class Settings(BaseSettings):
    """Runtime configuration for the auth service.

    Every field carries a default, so tests can build Settings() from a bare
    environment. Only SECRET_KEY is checked beyond its type.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key replaces it or fails startup.
    secret_key: str = ""
    database_url: str = "sqlite+aiosqlite:///./coursework_auth.db"

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = 900
    token_issuer: str = "coursework-api"
    token_audience: str = "coursework-app"
    # bcrypt work factor. Tests lower this to keep the suite fast.
    bcrypt_rounds: int = 12

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    secure_cookies: bool = False
    oauth_attempt_ttl_seconds: int = 300

    # ------------------------------------------------------------------
    # Google sign-in (left empty, the provider is switched off)
    # ------------------------------------------------------------------

    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""
    # False: a verified Google email without a local account is rejected.
    # True: the account is created as an active student on first sign-in.
    google_auto_provision: bool = False
    google_http_timeout_seconds: float = 10.0

    # ------------------------------------------------------------------
    # HTTP surface
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Apply the SECRET_KEY rules [M6] [M7].

        With DEBUG=true a missing key is replaced by a random one and a warning
        is logged; tokens and pending Google attempts then die with the process.
        Without DEBUG a missing key aborts startup. A key shorter than 32
        characters is refused either way.
        """
        if not self.secret_key:
            if not self.debug:
                raise ValueError(
                    "SECRET_KEY must be set unless DEBUG=true; "
                    "add it to the environment or to .env."
                )
            self.secret_key = secrets.token_hex(32)
            logger.warning("SECRET_KEY not set, generated a temporary one; issued tokens end with this process.")
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY is too short; use at least 32 characters.")
        return self

    @property
    def google_enabled(self) -> bool:
        return bool(self.google_client_id and self.google_client_secret)


@lru_cache
def get_settings() -> Settings:
    """Build Settings on first use and return the same instance afterwards.

    Tests that change the environment call get_settings.cache_clear() first.
    """
    return Settings()

"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the account service happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
and pass the Settings object (or the values it carries) into the component
that needs it.

How it is wired:
  get_settings() is cached with lru_cache, so the first call builds the one
      Settings instance and every later call returns it. Nothing mutates it
      after startup. api/main.py passes it to the TokenIssuer, PasswordHasher,
      media uploader and SessionManager constructors.

  Values come from the process environment, then .env. Each field reads the
      upper-cased variable of the same name (access_token_secret reads
      ACCESS_TOKEN_SECRET).

  The "after" model validators run once every field is resolved. DEBUG=true
      gets generated signing secrets and a warning; anything else refuses to
      start without explicit ones.

Security notes:
  Signing secrets shorter than 32 chars are rejected outright. HS256 relies on
  key entropy -- a short key weakens every token.

  The access and refresh secrets must differ. With one shared key an access
  token would verify as a refresh token (and vice versa) if the type claim
  check were ever dropped.

Layer rule: core/ is the kernel. This module may not import from api/, auth/,
or media/.
"""

import logging
import secrets
import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("vidstream.config")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent

_MIN_SECRET_LENGTH = 32


class Settings(BaseSettings):
    """Account service configuration.

    Every field has a default, so tests can build Settings(...) directly with
    keyword overrides. The validators below decide whether the result is
    safe to serve with.
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
    database_url: str = f"sqlite:///{_PROJECT_ROOT / 'auth' / 'vidstream_accounts.db'}"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev secret or raises, so callers never see "".
    access_token_secret: str = ""
    refresh_token_secret: str = ""
    access_token_expire_seconds: int = Field(default=3600, gt=0)
    refresh_token_expire_seconds: int = Field(default=10 * 24 * 3600, gt=0)

    # ------------------------------------------------------------------
    # Passwords and sessions
    # ------------------------------------------------------------------

    bcrypt_rounds: int = Field(default=12, ge=4, le=31)
    # Clearing the stored refresh token on password change means a stolen
    # refresh token does not outlive a password reset.
    revoke_sessions_on_password_change: bool = True

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    secure_cookies: bool = True
    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost", "http://localhost:3000", "http://127.0.0.1"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Media store
    # ------------------------------------------------------------------

    media_backend: Literal["local", "http"] = "local"
    media_root: Path = _PROJECT_ROOT / "media_store"
    media_base_url: str = "http://localhost:8000/media"
    # HTTP backend: unsigned multipart upload endpoint (Cloudinary-compatible).
    media_upload_url: str = ""
    media_upload_preset: str = ""
    media_upload_timeout: float = Field(default=10.0, gt=0)
    max_upload_bytes: int = Field(default=5 * 1024 * 1024, gt=0)
    upload_tmp_dir: Path = Path(tempfile.gettempdir())

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_token_secrets(self) -> "Settings":
        """Enforce the signing-secret policy.

        Dev mode (DEBUG=true): auto-generate random secrets with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if either
            secret is missing.

        Both modes: reject secrets shorter than 32 characters and reject an
            access secret equal to the refresh secret.
        """
        for name in ("access_token_secret", "refresh_token_secret"):
            if getattr(self, name):
                continue
            if not self.debug:
                raise ValueError(
                    f"{name.upper()} is required in production mode. "
                    "Set it in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
            setattr(self, name, secrets.token_hex(32))
            logger.warning("WARNING: Using auto-generated %s. Sessions will not persist across restarts.", name.upper())

        for name in ("access_token_secret", "refresh_token_secret"):
            if len(getattr(self, name)) < _MIN_SECRET_LENGTH:
                raise ValueError(f"{name.upper()} must be at least {_MIN_SECRET_LENGTH} characters.")
        if self.access_token_secret == self.refresh_token_secret:
            raise ValueError("ACCESS_TOKEN_SECRET and REFRESH_TOKEN_SECRET must be different.")
        return self

    @model_validator(mode="after")
    def validate_media_backend(self) -> "Settings":
        """The HTTP media backend is unusable without an upload endpoint."""
        if self.media_backend == "http" and not self.media_upload_url:
            raise ValueError("MEDIA_UPLOAD_URL is required when MEDIA_BACKEND=http.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide Settings.

    Tests that change environment variables must call get_settings.cache_clear().
    """
    return Settings()

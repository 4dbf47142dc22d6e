"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for LabelForge happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. The
      instance is handed to TokenIssuer, AuthService, AdminService and Mailer
      constructors at startup; nothing re-reads the environment per request.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Dev mode generates a signing key with a
      warning, production mode refuses to start without one.

Security notes:
  SECRET_KEY shorter than 32 chars is rejected outright. JWT signing and the
  HMAC digests of refresh / verification / reset tokens all rely on it.

  In production mode (DEBUG not set or false), a missing SECRET_KEY is a
  hard startup failure. The process never signs with an empty key.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, admin/, or plans/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("labelforge.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'labelforge.db'}"


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. The model_validator enforces
    production-safety rules at startup.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    database_url: str = _DEFAULT_DB_URL
    app_url: str = "http://localhost:5173"

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    access_token_expire_seconds: int = Field(default=15 * 60, gt=0)
    refresh_token_expire_days: int = Field(default=7, gt=0)
    refresh_token_rotation: bool = True
    # "multi": a fresh login leaves earlier sessions alive.
    # "single": a fresh login revokes every other refresh token first.
    session_policy: Literal["multi", "single"] = "multi"
    # "cookie": HttpOnly cookie pair. "body": tokens returned in JSON.
    token_delivery: Literal["cookie", "body"] = "cookie"
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    bootstrap_admin_email: str = Field(
        default="",
        validation_alias=AliasChoices("BOOTSTRAP_ADMIN_EMAIL", "ADMIN_EMAIL"),
    )
    verification_token_expire_hours: int = 24
    password_reset_expire_minutes: int = 60

    # ------------------------------------------------------------------
    # Email (all three of host/user/password must be set to enable)
    # ------------------------------------------------------------------

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_use_tls: bool = True
    smtp_from: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/15minutes"
    register_rate_limit: str = "5/hour"
    password_reset_rate_limit: str = "5/15minutes"
    default_rate_limit: str = "100/minute"

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost"]
    cors_origins: list[str] = ["http://localhost:5173", "http://127.0.0.1:5173"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, value: int) -> int:
        """bcrypt accepts log2 cost factors from 4 to 31."""
        if not 4 <= value <= 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        return value

    @field_validator("bootstrap_admin_email")
    @classmethod
    def normalize_bootstrap_email(cls, value: str) -> str:
        return value.strip().lower()

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce the SECRET_KEY policy.

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject keys shorter than 32 characters.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables, or build Settings(...) directly
    and pass it to the component under test.
    """
    return Settings()

"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for the billing backend happen here. No module
should call os.getenv() or os.environ.get() directly -- import get_settings()
instead, or accept a Settings instance as a constructor argument.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. access_secret -> ACCESS_SECRET). The camelCase names used by the
      original deployment (access_expiresIn, refresh_expiresIn) are accepted
      as aliases so existing .env files keep working.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved. Dev mode generates missing secrets with a warning,
      production mode refuses to start without them.

Security notes:
  [M6] JWT secrets shorter than 32 chars are rejected outright. HS256 signing
       and the refresh-token HMAC both rely on key entropy.

  [M7] Access and refresh tokens are signed with distinct secrets. A shared
       secret would let an access token pass as a refresh token.

Layer rule: core/ is the kernel. This module may not import from api/,
auth/, or cache/.
"""

import base64
import binascii
import logging
import re
import secrets
from functools import lru_cache

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("billing.config")

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smhd]?)\s*$")
_DURATION_UNITS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: int | str) -> int:
    """Convert a duration such as 900, "900", "15m", "1h" or "7d" to seconds.

    Raises ValueError for anything else, including zero or negative values.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, int):
        seconds = value
    else:
        match = _DURATION_RE.match(str(value).lower())
        if match is None:
            raise ValueError(f"Invalid duration: {value!r}")
        seconds = int(match.group(1)) * _DURATION_UNITS[match.group(2)]
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return seconds


def decode_base32_secret(secret: str) -> bytes:
    """Decode a base32 secret, tolerating lower case, spaces and missing padding.

    Raises ValueError (binascii.Error is a subclass) if it is not base32.
    """
    normalized = secret.strip().replace(" ", "").upper()
    return base64.b32decode(normalized + "=" * (-len(normalized) % 8))


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
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "production" turns on the Secure cookie flag.
    env: str = "development"

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev value or raises, so callers never see "".
    access_secret: str = ""
    access_expires_in: int = Field(
        default=15 * 60,
        validation_alias=AliasChoices("access_expires_in", "access_expiresIn"),
    )
    refresh_secret: str = ""
    refresh_expires_in: int = Field(
        default=7 * 86400,
        validation_alias=AliasChoices("refresh_expires_in", "refresh_expiresIn"),
    )
    cookie_max_age: int = 3600

    # ------------------------------------------------------------------
    # One-time passwords (password reset)
    # ------------------------------------------------------------------

    otp_secret: str = ""  # base32, shared by all users
    otp_digits: int = 6
    otp_step: int = 300
    otp_ttl_seconds: int = 300
    # Number of adjacent TOTP steps accepted on either side of "now". The
    # cache TTL still caps a code's lifetime at otp_ttl_seconds.
    otp_valid_window: int = 1

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    database_url: str = "sqlite:///billing_auth.db"
    # Empty string means "no Redis" -- an in-process MemoryCache is used.
    redis_url: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("access_expires_in", "refresh_expires_in", "cookie_max_age", mode="before")
    @classmethod
    def coerce_duration(cls, value):
        return parse_duration(value)

    @property
    def is_production(self) -> bool:
        return self.env.lower() == "production"

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the secret policy.

        Dev mode (DEBUG=true): auto-generate any missing secret with a warning.
            Tokens will not survive a restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if any
            secret is missing.

        Both modes: reject JWT secrets shorter than 32 characters, identical
            access/refresh secrets, and an OTP secret that is not base32.
        """
        generated = []
        for name in ("access_secret", "refresh_secret"):
            if not getattr(self, name):
                if not self.debug:
                    raise ValueError(
                        f"{name.upper()} is required in production mode. "
                        f"Set {name.upper()} in your environment or .env file. "
                        "To run in development mode, set DEBUG=true."
                    )
                setattr(self, name, secrets.token_hex(32))
                generated.append(name.upper())
            if len(getattr(self, name)) < 32:
                raise ValueError(f"{name.upper()} must be at least 32 characters.")

        if not self.otp_secret:
            if not self.debug:
                raise ValueError("OTP_SECRET is required in production mode.")
            self.otp_secret = base64.b32encode(secrets.token_bytes(20)).decode("ascii")
            generated.append("OTP_SECRET")
        try:
            otp_key = decode_base32_secret(self.otp_secret)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("OTP_SECRET must be a base32 string.") from exc
        # RFC 4226 minimum key length (128 bits).
        if len(otp_key) < 16:
            raise ValueError("OTP_SECRET must decode to at least 16 bytes (26+ base32 characters).")

        if self.access_secret == self.refresh_secret:
            raise ValueError("ACCESS_SECRET and REFRESH_SECRET must differ.")

        if generated:
            logger.warning(
                "WARNING: Using auto-generated %s. Issued tokens will not persist across restarts.",
                ", ".join(generated),
            )
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

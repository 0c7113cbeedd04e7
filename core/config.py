"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for SchoolGate happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_secret -> JWT_SECRET). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. DEBUG mode generates missing secrets with
      a warning; production mode refuses to start without an encryption key.

Security notes:
  [K1] ENCRYPTION_KEY must be exactly 32 bytes (AES-256). A wrong-length key
       is a hard startup failure in every mode -- PII written under a guessed
       key would be unrecoverable.

  [K2] A missing or malformed JWT_SECRET is NOT a startup failure. The token
       codec starts in degraded mode where every verification fails, so the
       process stays up but nobody can authenticate.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import base64
import logging
import secrets
import string
from functools import lru_cache

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("schoolgate.config")

_ENCRYPTION_KEY_BYTES = 32
_KEY_ALPHABET = string.ascii_letters + string.digits


def _generate_encryption_key() -> str:
    return "".join(secrets.choice(_KEY_ALPHABET) for _ in range(_ENCRYPTION_KEY_BYTES))


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file. Durations are milliseconds.
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
    database_url: str = ""  # empty = sqlite file next to auth/store.py

    # ------------------------------------------------------------------
    # Tokens
    # ------------------------------------------------------------------

    # Base64-encoded HMAC key. Empty string is the "not configured" sentinel.
    jwt_secret: str = ""
    jwt_issuer: str = "school-management-system"
    access_token_ttl_ms: int = 15 * 60 * 1000
    refresh_token_ttl_ms: int = 7 * 24 * 60 * 60 * 1000

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    max_failed_attempts: int = 5
    lockout_duration_ms: int = 30 * 60 * 1000
    attempt_counter_ttl_ms: int = 60 * 60 * 1000

    # ------------------------------------------------------------------
    # Field encryption
    # ------------------------------------------------------------------

    # 32 raw bytes, read as UTF-8 text (e.g. 32 ASCII characters).
    encryption_key: str = ""

    # ------------------------------------------------------------------
    # Security state store
    # ------------------------------------------------------------------

    # Empty = in-process store (single worker only; lockout not distributed).
    redis_url: str = ""
    redis_socket_timeout: float = 2.0

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secrets(self) -> "Settings":
        """Enforce the key policy [K1][K2].

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Tokens and encrypted fields will not survive a restart --
            acceptable for local dev only.

        Production mode: a missing ENCRYPTION_KEY refuses to start. A missing
            JWT_SECRET is left empty and the codec degrades instead.
        """
        if not self.encryption_key:
            if self.debug:
                self.encryption_key = _generate_encryption_key()
                logger.warning(
                    "WARNING: Using auto-generated ENCRYPTION_KEY. " "Encrypted fields will not decrypt after restart."
                )
            else:
                raise ValueError(
                    "ENCRYPTION_KEY is required in production mode. "
                    "Set ENCRYPTION_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        if len(self.encryption_key.encode("utf-8")) != _ENCRYPTION_KEY_BYTES:
            raise ValueError("ENCRYPTION_KEY must be exactly 32 bytes (256 bits).")

        if not self.jwt_secret:
            if self.debug:
                self.jwt_secret = base64.b64encode(secrets.token_bytes(64)).decode("ascii")
                logger.warning("WARNING: Using auto-generated JWT_SECRET. " "Tokens will not survive restarts.")
            else:
                logger.warning("JWT_SECRET is not set -- token verification is disabled.")
        return self

    @model_validator(mode="after")
    def validate_durations(self) -> "Settings":
        """Reject non-positive durations and an access TTL >= refresh TTL."""
        for name in (
            "access_token_ttl_ms",
            "refresh_token_ttl_ms",
            "lockout_duration_ms",
            "attempt_counter_ttl_ms",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name.upper()} must be positive.")
        if self.access_token_ttl_ms >= self.refresh_token_ttl_ms:
            raise ValueError("ACCESS_TOKEN_TTL_MS must be shorter than REFRESH_TOKEN_TTL_MS.")
        if self.max_failed_attempts < 1:
            raise ValueError("MAX_FAILED_ATTEMPTS must be at least 1.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for Storekeeper happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead,
or accept a Settings instance as a constructor argument.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. jwt_signing_key -> JWT_SIGNING_KEY). Type coercion and validation
      are built in.

  frozen=True: Settings is immutable after construction. The signing key and
      the cipher key are process-wide and read-only after startup.

Security notes:
  [K1] JWT_SIGNING_KEY and CIPHER_KEY are both required. A missing key is a
       hard startup failure -- there is no auto-generated fallback, because a
       random cipher key would make every stored encrypted credential
       undecryptable after a restart.

  [K2] JWT_SIGNING_KEY shorter than 32 chars is rejected outright. HMAC
       signing relies on key entropy.

  [K3] CIPHER_KEY must be base64 that decodes to exactly 32 bytes (AES-256).
       Generate with: base64.b64encode(secrets.token_bytes(32)).decode()

  Keys are never logged. Settings.__repr__ is pydantic's default, so the key
  fields are declared with repr=False.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

import base64
import binascii
import logging
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("storekeeper.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'storekeeper_auth.db'}"

_HMAC_ALGORITHMS = {"HS256", "HS384", "HS512"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    Everything except the two keys has a default. The validators enforce the
    startup-safety rules [K1]-[K3]; a failure surfaces as pydantic's
    ValidationError (a ValueError subclass) at construction time.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # Bearer tokens
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured"; the validator raises.
    jwt_signing_key: str = Field(default="", repr=False)
    jwt_algorithm: str = "HS256"
    token_expire_days: int = Field(default=30, ge=1)

    # ------------------------------------------------------------------
    # Credential storage
    # ------------------------------------------------------------------

    cipher_key: str = Field(default="", repr=False)
    hash_rounds: int = Field(default=64, ge=1)
    default_credential_mode: str = "hashed"

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    # 0 disables expiry: tokens stay valid until consumed or superseded.
    reset_token_ttl_seconds: int = Field(default=24 * 60 * 60, ge=0)
    reset_purge_interval_seconds: int = Field(default=60 * 60, ge=1)
    # Base for reset links. Empty means "use the request's own base URL".
    public_base_url: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_algorithm(cls, v: str) -> str:
        """Only HMAC-family algorithms make sense with a shared symmetric key."""
        v = v.upper()
        if v not in _HMAC_ALGORITHMS:
            raise ValueError(f"JWT_ALGORITHM must be one of {sorted(_HMAC_ALGORITHMS)}")
        return v

    @field_validator("default_credential_mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        v = v.lower()
        if v not in {"hashed", "encrypted"}:
            raise ValueError("DEFAULT_CREDENTIAL_MODE must be 'hashed' or 'encrypted'")
        return v

    @model_validator(mode="after")
    def validate_keys(self) -> "Settings":
        """Enforce the key policy [K1]-[K3].

        Runs once, at construction. Callers never see a Settings instance
        with an empty or malformed key.
        """
        if not self.jwt_signing_key:
            raise ValueError(
                "JWT_SIGNING_KEY is required. " "Set JWT_SIGNING_KEY in your environment or .env file."
            )
        if len(self.jwt_signing_key) < 32:
            raise ValueError("JWT_SIGNING_KEY must be at least 32 characters.")
        if not self.cipher_key:
            raise ValueError("CIPHER_KEY is required. " "Set CIPHER_KEY in your environment or .env file.")
        # Touch the decoded key so a malformed value fails here, not on first use.
        _ = self.cipher_key_bytes
        if self.hash_rounds < 50:
            logger.warning("HASH_ROUNDS=%d is below the recommended minimum of 50.", self.hash_rounds)
        return self

    @property
    def cipher_key_bytes(self) -> bytes:
        """Return the decoded 32-byte AES key [K3]."""
        try:
            key = base64.b64decode(self.cipher_key, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValueError("CIPHER_KEY is not valid base64.") from exc
        if len(key) != 32:
            raise ValueError(f"CIPHER_KEY must decode to exactly 32 bytes (got {len(key)}).")
        return key

    @property
    def reset_token_ttl(self) -> int | None:
        """TTL in seconds, or None when reset tokens never expire."""
        return self.reset_token_ttl_seconds or None


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    The API lifespan and the CLI call this at startup, so a missing key aborts
    the process before any request is served.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

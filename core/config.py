"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads for authsvc happen here. No module should
call os.getenv() or os.environ.get() directly -- import get_settings() instead.

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. hash_key -> HASH_KEY).

  @model_validator(mode="after"): Generates transient cookie keys in debug
      mode and refuses to start without them otherwise.

Security notes:
  HASH_KEY signs the session cookie, BLOCK_KEY encrypts it. Both are base64
  strings. Regenerating either one invalidates every outstanding session, so
  production deployments must pin both.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
auth/, or cache/.
"""

import base64
import binascii
import logging
import secrets
from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("authsvc.config")

HASH_KEY_SIZE = 64
BLOCK_KEY_SIZE = 32

STORAGE_ENGINES = ("memory", "sql")


def generate_key(size: int) -> str:
    """Return `size` random bytes as standard base64 text."""
    return base64.b64encode(secrets.token_bytes(size)).decode("ascii")


def decode_key(value: str) -> bytes:
    """Decode a base64 key. Raises ValueError on malformed input."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"key is not valid base64: {exc}") from exc


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields have defaults so Settings() can be instantiated in test
    environments without a real .env file, as long as DEBUG=true.
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
    verbose: bool = False
    realm: str = "authsvc"

    # ------------------------------------------------------------------
    # Session cookie
    # ------------------------------------------------------------------

    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates transient keys or raises.
    hash_key: str = ""
    block_key: str = ""
    insecure: bool = False
    login_lifetime_seconds: int = 2 * 60 * 60

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    token_ttl_seconds: int = 15 * 60
    grant_ttl_seconds: int = 14 * 24 * 60 * 60

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    auth_root: str = "/auth/"
    oauth_root: str = "/oauth/"
    user_root: str = "/api/v4/user"
    public_roots: list[str] = ["/oauth/token"]

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    storage_engine: str = "memory"
    database_url: str = "sqlite:///data/authsvc.db"
    clients_file: str = ""
    users_file: str = ""
    passwords_file: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("storage_engine")
    @classmethod
    def validate_storage_engine(cls, value: str) -> str:
        if value not in STORAGE_ENGINES:
            raise ValueError(f"STORAGE_ENGINE must be one of {STORAGE_ENGINES}, got {value!r}")
        return value

    @field_validator("auth_root", "oauth_root")
    @classmethod
    def validate_root(cls, value: str) -> str:
        if not value.startswith("/") or not value.endswith("/"):
            raise ValueError(f"route roots must start and end with '/', got {value!r}")
        return value

    @model_validator(mode="after")
    def validate_cookie_keys(self) -> "Settings":
        """Enforce the cookie key policy.

        Dev mode (DEBUG=true): auto-generate missing keys with a warning.
            Sessions will not survive restart.

        Production mode: refuse to start without both keys.

        Both modes: the decoded hash key must be at least 32 bytes and the
            block key must be a valid AES key size (16, 24 or 32 bytes).
        """
        if not self.hash_key or not self.block_key:
            if self.debug:
                self.hash_key = self.hash_key or generate_key(HASH_KEY_SIZE)
                self.block_key = self.block_key or generate_key(BLOCK_KEY_SIZE)
                logger.warning("Using auto-generated cookie keys. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "HASH_KEY and BLOCK_KEY are required in production mode. "
                    "Generate them with `python main.py keys`, or set DEBUG=true."
                )
        if len(decode_key(self.hash_key)) < 32:
            raise ValueError("HASH_KEY must decode to at least 32 bytes.")
        if len(decode_key(self.block_key)) not in (16, 24, 32):
            raise ValueError("BLOCK_KEY must decode to 16, 24 or 32 bytes.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return Settings()

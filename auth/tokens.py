"""
auth/tokens.py -- Password hashing, random tokens, and the session cookie codec.

Security design decisions:
  Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
       brute-force of low-entropy passwords expensive.

  Tokens: correlation ids, authorization codes and bearer tokens all come
       from secrets.token_hex(16) -- 128 bits from the OS CSPRNG, rendered as
       32 hex characters. All state lives server-side; the token itself
       carries no structure.

  Session cookie: authenticated encryption with two independent keys.
       The block key encrypts the JSON payload with AES-GCM (cryptography),
       the cookie name is bound in as associated data. The hash key signs the
       ciphertext together with an issue timestamp (itsdangerous), which lets
       decode() tell an expired session from a forged or corrupted one.
       Rotating either key invalidates every outstanding session.

Layer rule: no imports from api/, web/, or cache/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import secrets

import bcrypt
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

from core.config import Settings, decode_key

logger = logging.getLogger("authsvc.auth")

COOKIE_NAME = "authsvc-login-cookie"

_NONCE_SIZE = 12

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed hash (e.g. a plaintext value stored in the password field)
    is a mismatch, not an error.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Verified against when a username is unknown, so a miss costs one bcrypt
# round like a hit does.
DUMMY_HASH: str = hash_password("authsvc_timing_dummy")


# ---------------------------------------------------------------------------
# Random tokens
# ---------------------------------------------------------------------------


def generate_token() -> str:
    """Return an unguessable opaque token (128 bits, hex encoded)."""
    return secrets.token_hex(16)


# ---------------------------------------------------------------------------
# Session cookie codec
# ---------------------------------------------------------------------------


class SessionError(Exception):
    """The session cookie could not be decoded."""


class SessionExpired(SessionError):
    """The cookie was valid but is older than the login lifetime."""


class SessionInvalid(SessionError):
    """The cookie was forged, corrupted, or encoded with other keys."""


class SessionCodec:
    """Encrypt-then-sign codec for the login cookie payload.

    Usage:
        codec = SessionCodec(hash_key, block_key, max_age=7200)
        value = codec.encode({"username": "alice"})
        codec.decode(value)   # -> {"username": "alice"}
    """

    def __init__(self, hash_key: bytes, block_key: bytes, max_age: int) -> None:
        self._aead = AESGCM(block_key)
        self._signer = URLSafeTimedSerializer(hash_key, salt=COOKIE_NAME)
        self.max_age = max_age

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionCodec":
        return cls(
            decode_key(settings.hash_key),
            decode_key(settings.block_key),
            max_age=settings.login_lifetime_seconds,
        )

    def encode(self, data: dict) -> str:
        nonce = secrets.token_bytes(_NONCE_SIZE)
        sealed = self._aead.encrypt(nonce, json.dumps(data).encode("utf-8"), COOKIE_NAME.encode("ascii"))
        return self._signer.dumps(base64.urlsafe_b64encode(nonce + sealed).decode("ascii"))

    def decode(self, value: str) -> dict:
        """Return the payload dict. Raises SessionExpired or SessionInvalid."""
        try:
            blob = self._signer.loads(value, max_age=self.max_age)
        except SignatureExpired as exc:
            raise SessionExpired(str(exc)) from exc
        except BadSignature as exc:
            raise SessionInvalid(str(exc)) from exc
        if not isinstance(blob, str):
            raise SessionInvalid("unexpected payload type")
        try:
            raw = base64.urlsafe_b64decode(blob.encode("ascii"))
            plain = self._aead.decrypt(raw[:_NONCE_SIZE], raw[_NONCE_SIZE:], COOKIE_NAME.encode("ascii"))
            data = json.loads(plain)
        except (binascii.Error, ValueError, InvalidTag) as exc:
            raise SessionInvalid("undecryptable payload") from exc
        if not isinstance(data, dict):
            raise SessionInvalid("unexpected payload shape")
        return data


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, value: str, max_age: int, secure: bool) -> None:
    """Write the encoded session as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POSTs (CSRF mitigation).
    secure: only sent over HTTPS unless the deployment runs with INSECURE=true.
    max_age: matches the codec's max_age so cookie and payload expire together.
    """
    response.set_cookie(
        COOKIE_NAME,
        value=value,
        path="/",
        max_age=max_age,
        secure=secure,
        httponly=True,
        samesite="lax",
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(COOKIE_NAME, path="/")

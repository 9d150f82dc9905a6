"""
auth/checkers.py -- Request and password checker chains.

Pattern: Chain of Responsibility. A RequestChecker inspects one kind of
credential on an incoming request and returns the authenticated username, or
"" when it cannot vouch for the request. RequestCheckers runs an ordered list
and the first non-empty answer wins. PasswordCheckers does the same for a
(username, password) pair at login time.

Every checker requires the user to exist in the UserRegistry with state
"active", whatever the credential type.

Checkers never raise on bad credentials; they log at debug level and return
a miss. Storage faults (cache.store.StorageError) propagate so the app can
answer 500.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import json
import logging
import secrets
from abc import ABC, abstractmethod
from typing import IO, Optional

from starlette.requests import Request

from auth.oauth import AuthorizationServer, NotAuthorized
from auth.store import UserRegistry
from auth.tokens import COOKIE_NAME, DUMMY_HASH, SessionCodec, SessionError, verify_password

logger = logging.getLogger("authsvc.auth.checkers")

_BCRYPT_PREFIXES = ("$2a$", "$2b$", "$2y$")


def bearer_token(request: Request) -> str:
    """Return the token from an `Authorization: Bearer <token>` header, or ""."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:].strip()
    return ""


# ---------------------------------------------------------------------------
# Request checkers
# ---------------------------------------------------------------------------


class RequestChecker(ABC):
    @abstractmethod
    def authenticate(self, request: Request) -> str:
        """Return the authenticated username, or "" if this checker cannot vouch for the request."""

    def credentials_presented(self, request: Request) -> bool:
        """Return True if the request carries this checker's kind of credential."""
        return False


class RequestCheckers(RequestChecker):
    """Ordered composite. None entries are dropped so optional checkers can be passed inline."""

    def __init__(self, *checkers: Optional[RequestChecker]) -> None:
        self.checkers = [c for c in checkers if c is not None]

    def authenticate(self, request: Request) -> str:
        for checker in self.checkers:
            username = checker.authenticate(request)
            if username:
                return username
        return ""

    def credentials_presented(self, request: Request) -> bool:
        return any(c.credentials_presented(request) for c in self.checkers)


class CookieChecker(RequestChecker):
    """Authenticates the login session cookie set by POST {auth_root}login/."""

    def __init__(self, codec: SessionCodec, users: UserRegistry) -> None:
        self.codec = codec
        self.users = users

    def authenticate(self, request: Request) -> str:
        value = request.cookies.get(COOKIE_NAME)
        if not value:
            return ""
        try:
            data = self.codec.decode(value)
        except SessionError as exc:
            logger.debug("session cookie rejected: %s", exc.__class__.__name__)
            return ""
        username = data.get("username")
        if not isinstance(username, str):
            return ""
        user = self.users.find_active(username)
        return user.username if user else ""

    def credentials_presented(self, request: Request) -> bool:
        return bool(request.cookies.get(COOKIE_NAME))


class BearerChecker(RequestChecker):
    """Authenticates `Authorization: Bearer <token>` through the authorization server."""

    def __init__(self, server: AuthorizationServer) -> None:
        self.server = server

    def authenticate(self, request: Request) -> str:
        if not bearer_token(request):
            return ""
        try:
            return self.server.authorized_owner(request)
        except NotAuthorized as exc:
            logger.debug("bearer token rejected: %s", exc)
            return ""

    def credentials_presented(self, request: Request) -> bool:
        return bool(bearer_token(request))


# ---------------------------------------------------------------------------
# Password checkers
# ---------------------------------------------------------------------------


class PasswordChecker(ABC):
    @abstractmethod
    def check(self, username: str, password: str) -> bool:
        """Return True if password is valid for username."""


class PasswordCheckers(PasswordChecker):
    """Ordered composite; the first checker that accepts wins."""

    def __init__(self, *checkers: Optional[PasswordChecker]) -> None:
        self.checkers = [c for c in checkers if c is not None]

    def check(self, username: str, password: str) -> bool:
        return any(c.check(username, password) for c in self.checkers)


class BasicChecker(PasswordChecker):
    """Static username -> bcrypt hash map, loaded from a passwords file.

    Accounts listed here still need an active UserRegistry record when a
    registry is supplied.
    """

    def __init__(self, passwords: dict[str, str], users: Optional[UserRegistry] = None) -> None:
        self.passwords = dict(passwords)
        self.users = users

    @classmethod
    def from_json(cls, stream: IO[str], users: Optional[UserRegistry] = None) -> "BasicChecker":
        data = json.load(stream)
        if not isinstance(data, dict):
            raise ValueError("passwords file must be a JSON object of username -> bcrypt hash")
        logger.info("Loaded %d static password(s)", len(data))
        return cls(data, users)

    def check(self, username: str, password: str) -> bool:
        if not username or not password:
            return False
        hashed = self.passwords.get(username)
        if hashed is None:
            verify_password(password, DUMMY_HASH)
            return False
        if not verify_password(password, hashed):
            return False
        if self.users is not None and self.users.find_active(username) is None:
            return False
        return True


class BcryptChecker(PasswordChecker):
    """Compares against the bcrypt hash in the user's registry record."""

    def __init__(self, users: UserRegistry) -> None:
        self.users = users

    def check(self, username: str, password: str) -> bool:
        if not username or not password:
            return False
        user = self.users.find_active(username)
        if user is None or not user.password:
            verify_password(password, DUMMY_HASH)
            return False
        return verify_password(password, user.password)


class PlainTextChecker(PasswordChecker):
    """Compares against a plaintext password in the user's registry record.

    For development seed data only. Stored values that look like bcrypt
    hashes are left to BcryptChecker.
    """

    def __init__(self, users: UserRegistry) -> None:
        self.users = users

    def check(self, username: str, password: str) -> bool:
        if not username or not password:
            return False
        user = self.users.find_active(username)
        if user is None or not user.password or user.password.startswith(_BCRYPT_PREFIXES):
            return False
        return secrets.compare_digest(password.encode("utf-8"), user.password.encode("utf-8"))

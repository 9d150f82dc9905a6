"""
auth/dependencies.py -- The authentication gate and its FastAPI Depends() helpers.

AuthenticationGate decides, per request, whether the caller is authenticated
and by which mechanism:

  1. Paths under a public root pass with no principal.
  2. Otherwise the configured RequestCheckers run in order (bearer token,
     then session cookie in the default wiring). The first non-empty
     username wins and is stored on request.state.username.
  3. Otherwise NotAuthenticated is raised. unauthorized_response() renders
     it as a 401 challenge pointing the browser at the login page.

The gate instance lives on app.state.gate (built in the lifespan). Routers
attach it with dependencies=[Depends(require_login)].

Challenge format:
  WWW-Authenticate: authsvc realm="authsvc"
  WWW-Authenticate: authsvc realm="authsvc", error="invalid_token",
                    error_description="...", error_uri="/auth/login/"
The error parts are only sent when the request presented credentials that
failed. A rejected session cookie is also cleared.

Layer rule: no imports from api/ or web/.
  auth/dependencies.py may import from fastapi (for Request/responses)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import html
import logging
from collections.abc import Iterable
from typing import Optional
from urllib.parse import urlencode

from fastapi import Request
from fastapi.responses import HTMLResponse

from auth.checkers import RequestChecker
from auth.tokens import COOKIE_NAME, clear_session_cookie

logger = logging.getLogger("authsvc.auth.gate")

LOGIN_PAGE = "login/"
LOGOUT_PAGE = "logout/"
REDIRECT_PARAM = "redirect_uri"

ERROR_INVALID_TOKEN = "invalid_token"

_ERROR_DESCRIPTIONS: dict[str, str] = {
    ERROR_INVALID_TOKEN: "invalid or expired authentication token",
}


class NotAuthenticated(Exception):
    """No checker could authenticate the request."""

    def __init__(self, login_url: str, challenge: str, clear_cookie: bool = False) -> None:
        super().__init__(challenge)
        self.login_url = login_url
        self.challenge = challenge
        self.clear_cookie = clear_cookie


class AuthenticationGate:
    def __init__(
        self,
        checker: RequestChecker,
        public_roots: Iterable[str] = (),
        auth_root: str = "/auth/",
        realm: str = "authsvc",
    ) -> None:
        self.checker = checker
        self.public_roots = tuple(public_roots)
        self.auth_root = auth_root
        self.realm = realm

    @property
    def login_path(self) -> str:
        return self.auth_root + LOGIN_PAGE

    def is_public(self, path: str) -> bool:
        return any(path.startswith(root) for root in self.public_roots)

    def __call__(self, request: Request) -> str:
        """Return the authenticated username ("" on a public path). Raises NotAuthenticated."""
        if self.is_public(request.url.path):
            return ""
        username = self.checker.authenticate(request)
        if username:
            request.state.username = username
            return username

        presented = self.checker.credentials_presented(request)
        logger.debug("unauthenticated request to %s (credentials presented: %s)", request.url.path, presented)
        raise NotAuthenticated(
            login_url=self.login_url(str(request.url)),
            challenge=self.challenge(ERROR_INVALID_TOKEN if presented else None),
            clear_cookie=COOKIE_NAME in request.cookies,
        )

    def login_url(self, original_url: str) -> str:
        return f"{self.login_path}?{urlencode({REDIRECT_PARAM: original_url})}"

    def challenge(self, error: Optional[str] = None) -> str:
        parts = []
        if self.realm:
            parts.append(f'realm="{self.realm}"')
        if error:
            parts.append(f'error="{error}"')
            if error in _ERROR_DESCRIPTIONS:
                parts.append(f'error_description="{_ERROR_DESCRIPTIONS[error]}"')
            parts.append(f'error_uri="{self.login_path}"')
        return "authsvc " + ", ".join(parts) if parts else "authsvc"


def unauthorized_response(exc: NotAuthenticated) -> HTMLResponse:
    """Render NotAuthenticated as the 401 challenge with a client-side redirect body."""
    body = (
        '<!DOCTYPE html><html><head><meta http-equiv="refresh" '
        f"content=\"0;URL='{html.escape(exc.login_url)}'\" /></head><body></body></html>"
    )
    response = HTMLResponse(
        body,
        status_code=401,
        headers={"WWW-Authenticate": exc.challenge, "Location": exc.login_url},
    )
    if exc.clear_cookie:
        clear_session_cookie(response)
    return response


def require_login(request: Request) -> str:
    """Run the app's authentication gate. Use as a FastAPI dependency:

        router = APIRouter(dependencies=[Depends(require_login)])
        def route(username: str = Depends(require_login)): ...
    """
    gate: AuthenticationGate = request.app.state.gate
    return gate(request)


def get_username(request: Request) -> str:
    """Return the username the gate attached to this request, or ""."""
    return getattr(request.state, "username", "")

"""
api/routes/login.py -- Session login and logout form handlers.

Routes (mounted under settings.auth_root):
  POST login/   -- submit=Login&username&password[&redirect_uri]; sets the session cookie
  POST logout/  -- submit=Logout; clears the session cookie

Both handlers answer a bad submission with an empty 400, matching what a
plain HTML form post expects. They are not behind the authentication gate.

Security:
  POST login/ is rate-limited per client IP (LOGIN_RATE_LIMIT).
  The post-login redirect only follows local paths or same-origin URLs.
  Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, Form, Request, Response
from fastapi.responses import RedirectResponse

from api.limiter import limiter, login_rate_limit
from auth.checkers import PasswordChecker
from auth.dependencies import REDIRECT_PARAM
from auth.tokens import SessionCodec, clear_session_cookie, set_session_cookie
from core.config import Settings

logger = logging.getLogger("authsvc.api.login")

router = APIRouter()


def _safe_redirect(target: str, request: Request) -> str:
    """Validate a post-login redirect target.

    Accepts server-local paths ("/x", never "//x" or "/\\x") and absolute
    http(s) URLs on the same host as the login request. Anything else becomes "/".
    """
    if target.startswith("/") and not target.startswith(("//", "/\\")):
        return target
    parts = urlsplit(target)
    if parts.scheme in ("http", "https") and parts.netloc == request.url.netloc:
        return target
    return "/"


def _bad_request() -> Response:
    return Response(status_code=400, headers={"Cache-Control": "no-store"})


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login/")
def login(
    request: Request,
    submit: str = Form(""),
    username: str = Form(""),
    password: str = Form(""),
    redirect_uri: str = Form(""),
) -> Response:
    if submit != "Login":
        return _bad_request()
    checker: PasswordChecker = request.app.state.password_checker
    if not checker.check(username, password):
        logger.info("login failed for %r", username)
        return _bad_request()

    settings: Settings = request.app.state.settings
    codec: SessionCodec = request.app.state.session_codec
    target = _safe_redirect(redirect_uri or request.query_params.get(REDIRECT_PARAM, ""), request)
    resp = RedirectResponse(target, status_code=303)
    set_session_cookie(
        resp,
        codec.encode({"username": username}),
        max_age=settings.login_lifetime_seconds,
        secure=not settings.insecure,
    )
    resp.headers["Cache-Control"] = "no-store"
    logger.info("login succeeded for %r", username)
    return resp


@router.post("/logout/")
def logout(submit: str = Form("")) -> Response:
    if submit != "Logout":
        return _bad_request()
    resp = RedirectResponse("/?" + urlencode({"msg": "logged out"}), status_code=303)
    clear_session_cookie(resp)
    return resp

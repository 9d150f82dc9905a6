"""
web/routes.py -- Jinja2 template routes for the authsvc login pages.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user registry and cookie codec) but return HTML instead of JSON.
Form submissions go to the POST handlers in api/routes/login.py.

Routes:
  GET  /                    -- landing page, shows who is logged in
  GET  {auth_root}login     -- login form, or logout form when a valid session exists
  GET  {auth_root}login/    -- same page; the gate's challenge points here
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates

from auth.checkers import CookieChecker
from auth.dependencies import LOGIN_PAGE, LOGOUT_PAGE
from core.config import get_settings

logger = logging.getLogger("authsvc.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_AUTH_ROOT = get_settings().auth_root

# Whitelist mapping for ?msg= query params on /.
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. Prevents reflected XSS via crafted query strings.
_MESSAGES: dict[str, str] = {
    "logged out": "You have been logged out.",
}


def _session_username(request: Request) -> str:
    checker = CookieChecker(request.app.state.session_codec, request.app.state.users)
    return checker.authenticate(request)


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> HTMLResponse:
    return templates.TemplateResponse(
        "index.html",
        {
            "request": request,
            "username": _session_username(request),
            "message": _MESSAGES.get(request.query_params.get("msg", "")),
            "login_url": _AUTH_ROOT + LOGIN_PAGE,
        },
    )


@router.get(_AUTH_ROOT + "login", response_class=HTMLResponse)
@router.get(_AUTH_ROOT + LOGIN_PAGE, response_class=HTMLResponse)
def login_form(request: Request, redirect_uri: str = "") -> HTMLResponse:
    """Render the login form, or the logout form for a caller with a valid session."""
    username = _session_username(request)
    if username:
        return templates.TemplateResponse(
            "logout.html",
            {
                "request": request,
                "username": username,
                "action": _AUTH_ROOT + LOGOUT_PAGE,
            },
        )
    return templates.TemplateResponse(
        "login.html",
        {
            "request": request,
            "redirect_uri": redirect_uri,
            "action": _AUTH_ROOT + LOGIN_PAGE,
        },
    )

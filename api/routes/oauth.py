"""
api/routes/oauth.py -- OAuth2 authorization-code endpoints.

Routes (mounted under settings.oauth_root):
  GET  authorize   -- validate the request, render the approval form
  GET  approve     -- record the user's decision, 303 back to the client
  POST token       -- exchange a code for a bearer token (public root)
  GET  <other>     -- debug echo of the URL and query parameters

The whole router sits behind the authentication gate; POST token is reached
by clients without a session because its path is a public root.

Protocol faults are raised as auth.oauth.OAuthError and rendered as
{"error": "<message>"} by the handler in api/main.py.
"""

from __future__ import annotations

from pathlib import Path

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from api.models import BearerResponse, DebugEcho
from auth.dependencies import require_login
from auth.oauth import AuthorizationServer

templates = Jinja2Templates(directory=str(Path(__file__).parent.parent / "templates"))

router = APIRouter(dependencies=[Depends(require_login)])


@router.get("/authorize", response_class=HTMLResponse)
def authorize(
    request: Request,
    response_type: str = "",
    client_id: str = "",
    redirect_uri: str = "",
    state: str = "",
) -> HTMLResponse:
    """Park the authorization request and ask the user to approve it."""
    server: AuthorizationServer = request.app.state.oauth
    pending = server.authorize(
        {
            "response_type": response_type,
            "client_id": client_id,
            "redirect_uri": redirect_uri,
            "state": state,
        }
    )
    return templates.TemplateResponse(
        "authorize.html",
        {
            "request": request,
            "application_name": pending.application_name,
            "corr": pending.id,
            "approve_url": request.url_for("approve").path,
        },
    )


@router.get("/approve", name="approve")
def approve(
    request: Request,
    corr: str = "",
    approve: str = "",
    username: str = Depends(require_login),
) -> RedirectResponse:
    server: AuthorizationServer = request.app.state.oauth
    return RedirectResponse(server.approve(corr, approve, username), status_code=303)


@router.post("/token", response_model=BearerResponse)
def token(
    request: Request,
    grant_type: str = Form(""),
    code: str = Form(""),
    client_id: str = Form(""),
    client_secret: str = Form(""),
) -> JSONResponse:
    """Exchange an authorization code. Client credentials come from the form or HTTP Basic."""
    server: AuthorizationServer = request.app.state.oauth
    bearer = server.exchange(
        {
            "grant_type": grant_type,
            "code": code,
            "client_id": client_id,
            "client_secret": client_secret,
        },
        request.headers.get("Authorization", ""),
    )
    resp = JSONResponse(content=BearerResponse(**bearer).model_dump())
    resp.headers["Cache-Control"] = "no-store"
    return resp


# Registered last so it only catches what the routes above do not.
@router.get("/{path:path}", response_model=DebugEcho)
def echo(request: Request, path: str) -> DebugEcho:
    params = request.query_params
    keys = sorted(set(params.keys()))
    return DebugEcho(
        url=str(request.url),
        query_keys=keys,
        values={key: params.getlist(key) for key in keys},
    )

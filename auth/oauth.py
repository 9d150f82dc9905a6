"""
auth/oauth.py -- Minimal OAuth2 authorization-code grant server.

State machine for one grant:

  REQUESTED         GET  {oauth_root}authorize   validate, store under a correlation id
  PENDING_APPROVAL  GET  {oauth_root}approve     user approves; delete the correlation
                                                 entry (single use), re-store under a NEW code
  ISSUED(code)      POST {oauth_root}token       check client, delete the code (single use),
                                                 mint a bearer token
  EXCHANGED(token)                               token -> username in the TokenCache

The correlation id and the authorization code are distinct random values, so
the id embedded in the approval form can never be exchanged for a token.
Pending records live for token_ttl, bearer tokens for grant_ttl.

AuthorizationServer is framework-free: it takes plain mappings and strings
and raises OAuthError, which the API layer renders as JSON. Storage faults
(cache.store.StorageError) are not caught here.

Not supported: refresh tokens, PKCE, any grant type other than
authorization_code, client secrets.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import base64
import binascii
import logging
from collections.abc import Mapping
from datetime import timedelta
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from auth.models import PendingAuthorization
from auth.store import ClientRegistry, UserRegistry
from auth.tokencache import TokenCache
from auth.tokens import generate_token
from cache.store import Cache, Clock, Expired, NotFound, utcnow

logger = logging.getLogger("authsvc.auth.oauth")

SCOPE_ALL = "all"
GRANT_AUTHORIZATION_CODE = "authorization_code"
RESPONSE_TYPE_CODE = "code"


class OAuthError(Exception):
    """A protocol fault, reported to the caller as {"error": message}."""

    def __init__(self, message: str, status_code: int = 403) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class NotAuthorized(Exception):
    """The request carries no valid bearer token."""


def with_query(url: str, params: Mapping[str, str]) -> str:
    """Return url with params merged into its query string."""
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.extend(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


def client_credentials(form: Mapping[str, str], authorization: str = "") -> tuple[str, str]:
    """Return (client_id, client_secret) from the form or an HTTP Basic header.

    The two sources are mutually exclusive.
    """
    client_id = form.get("client_id", "")
    secret = form.get("client_secret", "")
    if not authorization.startswith("Basic "):
        return client_id, secret
    if client_id:
        raise OAuthError("invalid client")
    try:
        decoded = base64.b64decode(authorization[6:].strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        raise OAuthError("invalid auth") from exc
    if ":" not in decoded:
        raise OAuthError("invalid auth")
    client_id, secret = decoded.split(":", 1)
    return client_id, secret


class AuthorizationServer:
    def __init__(
        self,
        pending: Cache[PendingAuthorization],
        tokens: TokenCache,
        clients: ClientRegistry,
        users: UserRegistry,
        token_ttl: timedelta = timedelta(minutes=15),
        grant_ttl: timedelta = timedelta(days=14),
        clock: Optional[Clock] = None,
    ) -> None:
        self.pending = pending
        self.tokens = tokens
        self.clients = clients
        self.users = users
        self.token_ttl = token_ttl
        self.grant_ttl = grant_ttl
        self._clock: Clock = clock or utcnow

    # ------------------------------------------------------------------
    # authorize
    # ------------------------------------------------------------------

    def authorize(self, params: Mapping[str, str]) -> PendingAuthorization:
        """Validate an authorization request and park it for approval.

        Returns the stored PendingAuthorization; its id is the correlation id
        to embed in the approval form. Nothing is stored on failure.
        """
        redirect_uri = params.get("redirect_uri", "")
        if not redirect_uri:
            raise OAuthError("missing redirect_uri")
        parts = urlsplit(redirect_uri)
        if not parts.scheme or not parts.netloc:
            raise OAuthError("invalid redirect_uri")
        if params.get("response_type", "") != RESPONSE_TYPE_CODE:
            raise OAuthError("response_type unsupported")
        client_id = params.get("client_id", "")
        if not self.clients.verify_client(client_id):
            raise OAuthError("invalid client id")
        if not self.clients.verify_redirect(client_id, redirect_uri):
            raise OAuthError("invalid client redirect")

        client = self.clients.get(client_id)
        request = PendingAuthorization(
            id=generate_token(),
            application_name=client.name or client.id,
            response_type=RESPONSE_TYPE_CODE,
            client_id=client_id,
            redirect_uri=redirect_uri,
            state=params.get("state", ""),
        )
        self._park(request)
        logger.info("authorization requested by client %r", client_id)
        return request

    # ------------------------------------------------------------------
    # approve
    # ------------------------------------------------------------------

    def approve(self, correlation: str, decision: str, username: str) -> str:
        """Record the user's decision. Returns the URL to redirect the user agent to."""
        request = self._lookup(correlation)
        if request is None or request.username:
            raise OAuthError("invalid correlation")
        if decision != "Approve":
            self.pending.discard(correlation)
            return with_query(request.redirect_uri, {"error": "access_denied"})
        if request.response_type != RESPONSE_TYPE_CODE:
            self.pending.discard(correlation)
            return with_query(request.redirect_uri, {"error": "unsupported_response_type"})

        # Claiming the correlation id is the commit point: a concurrent
        # approval of the same request loses here and issues no code.
        if not self.pending.discard(correlation):
            raise OAuthError("invalid correlation")
        request.username = username
        request.id = generate_token()
        self._park(request)
        logger.info("authorization approved by %r for client %r", username, request.client_id)
        return with_query(request.redirect_uri, {"code": request.id, "state": request.state})

    # ------------------------------------------------------------------
    # token
    # ------------------------------------------------------------------

    def exchange(self, form: Mapping[str, str], authorization: str = "") -> dict:
        """Exchange an authorization code for a bearer token."""
        code = form.get("code", "")
        grant = self._lookup(code)
        if grant is None or not grant.username:
            raise OAuthError("invalid token")
        client_id, _secret = client_credentials(form, authorization)
        if not self.clients.verify_client(client_id):
            raise OAuthError("invalid client id")
        if form.get("grant_type", "") != GRANT_AUTHORIZATION_CODE:
            raise OAuthError("unsupported grant type")
        if grant.client_id != client_id:
            raise OAuthError("mismatching client ids")
        # A concurrent exchange of the same code may have won the race.
        if not self.pending.discard(code):
            raise OAuthError("invalid token")

        token = generate_token()
        self.tokens.put_until(self._clock() + self.grant_ttl, grant.username, token)
        logger.info("bearer token issued to %r via client %r", grant.username, client_id)
        return {"access_token": token, "token_type": "Bearer"}

    # ------------------------------------------------------------------
    # bearer verification
    # ------------------------------------------------------------------

    def authorized(self, request) -> list[str]:
        """Return the scopes granted to the request's `Authorization` header.

        Raises NotAuthorized unless it is a live bearer token owned by an
        active user.
        """
        self.authorized_owner(request)
        return [SCOPE_ALL]

    def authorized_owner(self, request) -> str:
        """Return the active username owning the request's bearer token. Raises NotAuthorized."""
        authorization = request.headers.get("Authorization", "")
        if not authorization.startswith("Bearer "):
            raise NotAuthorized("no bearer token")
        try:
            owner = self.tokens.get(authorization[7:].strip())
        except (NotFound, Expired) as exc:
            raise NotAuthorized("invalid token") from exc
        user = self.users.find_active(owner)
        if user is None:
            raise NotAuthorized("inactive owner")
        return user.username

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _park(self, request: PendingAuthorization) -> None:
        self.pending.put_until(self._clock() + self.token_ttl, request.id, request)

    def _lookup(self, key: str) -> Optional[PendingAuthorization]:
        if not key:
            return None
        try:
            return self.pending.get(key)
        except (NotFound, Expired) as exc:
            logger.debug("pending authorization lookup failed: %s", exc.__class__.__name__)
            return None

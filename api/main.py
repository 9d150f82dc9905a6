"""
api/main.py -- FastAPI application entry point for authsvc.

Exposes the OAuth2 authorization-code endpoints, the session login handlers,
and the user info endpoint, all behind one authentication gate.

Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- method, path, status, latency for every request
  2. SlowAPIMiddleware  -- enforces per-route rate limits from api.limiter

Lifespan builds every stateful component from Settings and hangs it on
app.state; nothing is stored at module level. Shutdown disposes the SQL
engine when one was opened.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import timedelta
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.login import router as login_router
from api.routes.oauth import router as oauth_router
from api.routes.user import router as user_router
from auth.checkers import (
    BasicChecker,
    BcryptChecker,
    BearerChecker,
    CookieChecker,
    PasswordCheckers,
    PlainTextChecker,
    RequestCheckers,
)
from auth.dependencies import AuthenticationGate, NotAuthenticated, unauthorized_response
from auth.models import Client, PendingAuthorization, User
from auth.oauth import AuthorizationServer, OAuthError
from auth.store import ClientRegistry, UserRegistry
from auth.tokencache import TokenCache
from auth.tokens import SessionCodec
from cache.sql import SQLCache, open_engine
from cache.store import STRING_CODEC, STRING_LIST_CODEC, Cache, Codec, MemoryCache, StorageError, dataclass_codec
from core.config import Settings, get_settings

VERSION = "0.3.0"

_settings = get_settings()

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.DEBUG if _settings.verbose else logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("authsvc.api")

# ---------------------------------------------------------------------------
# Storage buckets
# ---------------------------------------------------------------------------

BUCKET_PENDING = "cache"
BUCKET_OWNER_TOKENS = "clienttokens"
BUCKET_TOKEN_OWNERS = "tokenclients"
BUCKET_CLIENTS = "clients"
BUCKET_USERS = "users"

CacheFactory = Callable[[str, Codec], Cache]


def open_caches(settings: Settings) -> tuple[CacheFactory, Optional[Engine]]:
    """Return a bucket -> Cache factory for the configured storage engine.

    "sql" buckets share one Engine (returned so shutdown can dispose it);
    "memory" buckets are independent dicts.
    """
    if settings.storage_engine == "sql":
        engine = open_engine(settings.database_url)
        logger.info("SQL storage opened at %s", engine.url.render_as_string(hide_password=True))
        return (lambda bucket, codec: SQLCache(engine, bucket, codec)), engine
    return (lambda bucket, codec: MemoryCache(codec)), None


def init_state(app: FastAPI, settings: Settings, make_cache: Optional[CacheFactory] = None) -> None:
    """Build every service from settings and attach it to app.state.

    Order: caches, registries (seeded from the JSON files), token cache,
    cookie codec, authorization server, checker chains, gate.
    """
    engine: Optional[Engine] = None
    if make_cache is None:
        make_cache, engine = open_caches(settings)

    clients = ClientRegistry(make_cache(BUCKET_CLIENTS, dataclass_codec(Client)))
    users = UserRegistry(make_cache(BUCKET_USERS, dataclass_codec(User)))
    if settings.clients_file:
        with Path(settings.clients_file).open(encoding="utf-8") as f:
            clients.load_from_json(f)
    if settings.users_file:
        with Path(settings.users_file).open(encoding="utf-8") as f:
            users.load_from_json(f)

    basic: Optional[BasicChecker] = None
    if settings.passwords_file:
        with Path(settings.passwords_file).open(encoding="utf-8") as f:
            basic = BasicChecker.from_json(f, users)

    tokens = TokenCache(
        make_cache(BUCKET_OWNER_TOKENS, STRING_LIST_CODEC),
        make_cache(BUCKET_TOKEN_OWNERS, STRING_CODEC),
    )
    codec = SessionCodec.from_settings(settings)
    oauth = AuthorizationServer(
        make_cache(BUCKET_PENDING, dataclass_codec(PendingAuthorization)),
        tokens,
        clients,
        users,
        token_ttl=timedelta(seconds=settings.token_ttl_seconds),
        grant_ttl=timedelta(seconds=settings.grant_ttl_seconds),
    )

    app.state.settings = settings
    app.state.engine = engine
    app.state.clients = clients
    app.state.users = users
    app.state.tokens = tokens
    app.state.session_codec = codec
    app.state.oauth = oauth
    app.state.password_checker = PasswordCheckers(basic, PlainTextChecker(users), BcryptChecker(users))
    app.state.gate = AuthenticationGate(
        RequestCheckers(BearerChecker(oauth), CookieChecker(codec, users)),
        public_roots=settings.public_roots,
        auth_root=settings.auth_root,
        realm=settings.realm,
    )


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Everything before yield runs on startup; everything after on shutdown."""
    settings = get_settings()
    logger.info("authsvc starting up (storage=%s)", settings.storage_engine)
    init_state(app, settings)

    yield

    if app.state.engine is not None:
        app.state.engine.dispose()
    logger.info("authsvc shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="authsvc",
    description="Session login, bearer-token verification and a minimal OAuth2 authorization-code server.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Registered after SlowAPIMiddleware, so it wraps it and also sees 429s.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(login_router, prefix=_settings.auth_root.rstrip("/"), tags=["Login"])
app.include_router(oauth_router, prefix=_settings.oauth_root.rstrip("/"), tags=["OAuth"])
app.include_router(user_router, prefix=_settings.user_root.rstrip("/"), tags=["User"])
# The login form page is mounted by asgi.py, not here.
# api/ and web/ are independent layers -- only the top-level asgi.py imports both.


# ---------------------------------------------------------------------------
# Exception handlers
#
# JSON errors share the {"error": "<message>"} envelope.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@app.exception_handler(NotAuthenticated)
async def not_authenticated_handler(request: Request, exc: NotAuthenticated):
    return unauthorized_response(exc)


@app.exception_handler(OAuthError)
async def oauth_error_handler(request: Request, exc: OAuthError) -> JSONResponse:
    logger.info("oauth fault on %s: %s", request.url.path, exc.message)
    return _error(exc.status_code, exc.message)


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    """Storage faults are recoverable: the request fails, the process keeps serving.

    The raw error is logged only, never written to the response body.
    """
    logger.exception("Storage failure on %s %s", request.method, request.url.path)
    return _error(500, "internal error")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429. Retry-After tells clients how many seconds to wait."""
    response = _error(429, "too many requests")
    response.headers["Retry-After"] = str(int(getattr(exc, "retry_after", 60)))
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(400, "invalid request")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail)).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors. The client gets a generic message."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal error")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable and
# never behind the gate. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and the active storage engine."""
    return HealthResponse(version=VERSION, storage=request.app.state.settings.storage_engine)

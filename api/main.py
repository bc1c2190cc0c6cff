"""
api/main.py -- FastAPI application entry point for keyshare.

Exposes the user directory, category tree and key store over HTTP, issues
OAuth2 bearer tokens, and hosts the per-user update channel.

Run with:  uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the stores, the id codec, the notifier and the services on
app.state at startup, and disposes of the stores on shutdown.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import oauth_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.authorities import router as authorities_router
from api.routes.v1.categories import router as categories_router
from api.routes.v1.groups import router as groups_router
from api.routes.v1.keys import router as keys_router
from api.routes.v1.users import router as users_router
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from core.config import get_settings
from core.exceptions import KeyshareError
from core.hashid import IdCodec
from realtime.registry import ConnectionRegistry, WebSocketNotifier
from services.access import AccessResolver
from services.categories import CategoryService
from services.groups import GroupService
from services.keys import KeyService
from services.users import UserService
from vault.store import VaultStore

VERSION = "0.9.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("keyshare.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def install_services(app: FastAPI, user_store: UserStore, vault_store: VaultStore) -> None:
    """Build the codec, notifier and services around two stores on app.state.

    Shared by the real lifespan and the test lifespan so both wire the object
    graph the same way. Must run inside the event loop: the notifier captures
    the running loop so worker threads can schedule sends on it.
    """
    app.state.user_store = user_store
    app.state.vault_store = vault_store
    app.state.codec = IdCodec(_settings.hashids_salt, _settings.hashids_min_length)
    app.state.connections = ConnectionRegistry()
    app.state.notifier = WebSocketNotifier(app.state.connections, asyncio.get_running_loop())

    resolver = AccessResolver(user_store, vault_store)
    keys = KeyService(vault_store, user_store, resolver, app.state.codec, app.state.notifier)
    app.state.resolver = resolver
    app.state.key_service = keys
    app.state.category_service = CategoryService(vault_store, user_store, resolver, keys)
    app.state.group_service = GroupService(user_store, vault_store, keys)
    app.state.user_service = UserService(user_store, vault_store, keys, root_login=_settings.root_login)


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.
    """
    logger.info("keyshare API starting up")
    user_store = UserStore()
    vault_store = VaultStore()
    install_services(app, user_store, vault_store)
    purged = user_store.purge_expired_tokens()
    logger.info("Stores initialized (%d expired tokens purged)", purged)
    if user_store.get_by_login(_settings.root_login) is None:
        logger.warning("Root user %r does not exist -- run `python main.py create-root`", _settings.root_login)

    yield

    user_store.close()
    vault_store.close()
    logger.info("keyshare API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="keyshare API",
    description="Shared credential store with group-based access and per-user encrypted copies.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler; latency is wall-clock time around call_next.
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

app.include_router(oauth_router, tags=["OAuth2"])
app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(authorities_router, prefix="/api/v1", tags=["Authorities"])
app.include_router(groups_router, prefix="/api/v1", tags=["Groups"])
app.include_router(categories_router, prefix="/api/v1", tags=["Categories"])
app.include_router(keys_router, prefix="/api/v1", tags=["Keys"])
# The WebSocket router is mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(user: User = Depends(get_current_user)):
    """Swagger UI -- requires authentication."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="keyshare API")


@app.get("/redoc", include_in_schema=False)
async def redoc(user: User = Depends(get_current_user)):
    """ReDoc UI -- requires authentication."""
    return get_redoc_html(openapi_url="/openapi.json", title="keyshare API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(KeyshareError)
async def domain_error_handler(request: Request, exc: KeyshareError) -> JSONResponse:
    """Map a service-layer exception to its status code and error code."""
    if exc.status_code == 403:
        logger.info("Access denied on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(code=exc.code, message=exc.message, detail=exc.detail)
        ).model_dump(),
    )


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """A unique constraint lost a race that the service-level check missed."""
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return JSONResponse(
        status_code=409,
        content=ErrorResponse(
            error=ErrorDetail(code="conflict", message="The resource already exists.")
        ).model_dump(),
    )


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit and no auth -- load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return liveness, version, and a SELECT 1 probe of both databases."""
    database = "ok"
    try:
        for store in (request.app.state.user_store, request.app.state.vault_store):
            with store.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=VERSION, components={"app": "ok", "database": database})

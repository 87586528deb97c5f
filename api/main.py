"""
api/main.py -- FastAPI application entry point for LicenseDesk.

Install deps:  pip install -e .
Run with:      python main.py serve
               uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. log_requests       -- one log line per request, including gate redirects
  2. access_gate        -- auth/gate.py policy: degraded / public / write / session
  3. SlowAPIMiddleware  -- per-route rate limits from api.limiter

Lifespan builds every component from one Settings object (store, directory
client, verifier, session codec, gate, reconciler, scheduler), starts the
sync scheduler, and on shutdown waits for an in-flight sync pass before
closing the database.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import configure_login_limit, limiter
from api.models import ErrorResponse, HealthResponse
from api.routes.directory import router as directory_router
from api.routes.licenses import router as licenses_router
from api.routes.meetings import router as meetings_router
from auth.credentials import CredentialVerifier
from auth.gate import AccessGate
from auth.sessions import SessionCodec
from core.config import Settings, get_settings
from directory.client import DirectoryClient, DirectoryUnavailable
from directory.scheduler import SyncScheduler
from directory.sync import Reconciler
from inventory.errors import InventoryError
from inventory.store import InventoryStore

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("licensedesk.api")


def configure_logging(level_name: str) -> None:
    level = logging.getLevelName(level_name.strip().upper())
    if not isinstance(level, int):
        logger.warning("Unknown LOG_LEVEL %r, using INFO", level_name)
        level = logging.INFO
    logging.getLogger().setLevel(level)


# ---------------------------------------------------------------------------
# Component wiring
# ---------------------------------------------------------------------------


def init_app_state(
    app: FastAPI,
    settings: Settings,
    store: InventoryStore,
    client: Optional[DirectoryClient] = None,
) -> None:
    """Build every request-time component from settings and attach it to app.state.

    Shared by the real lifespan and the test lifespan so both wire the same
    graph. client defaults to a real ldap3-backed DirectoryClient.
    """
    client = client or DirectoryClient(settings)
    codec = SessionCodec(settings.session_secret, settings.session_ttl_seconds)
    reconciler = Reconciler(client, store)
    app.state.settings = settings
    app.state.store = store
    app.state.directory = client
    app.state.verifier = CredentialVerifier(settings, client)
    app.state.codec = codec
    app.state.gate = AccessGate(settings, codec)
    app.state.reconciler = reconciler
    app.state.scheduler = SyncScheduler(settings, reconciler)
    configure_login_limit(settings.login_rate_limit)


def log_access_policy(settings: Settings) -> None:
    """Make the open-by-default configurations visible at startup."""
    if not settings.directory_enabled:
        logger.warning("LDAP is not configured (LDAP_URL / LDAP_BASE_DN): authentication and sync are disabled")
        return
    logger.info(
        "LDAP enabled: url=%s base_dn=%s user_attr=%s",
        settings.ldap_url,
        settings.ldap_base_dn,
        settings.ldap_user_attr,
    )
    if not settings.write_api_token:
        logger.warning("WRITE_API_TOKEN is not set: write requests under /api/ are accepted without a session")
    if settings.allowed_logins:
        logger.info("Login restricted to %d AUTH_USERS entries", len(settings.allowed_logins))


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup: settings, storage, components, scheduler. Shutdown in reverse.

    A storage failure here is fatal: the exception propagates and the server
    refuses to start.
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    logger.info("LicenseDesk API starting up")
    store = InventoryStore(settings.db_url)
    logger.info("Inventory store initialized (%s)", settings.db_url)
    init_app_state(app, settings, store)
    log_access_policy(settings)
    await app.state.scheduler.start()

    yield

    await app.state.scheduler.stop()
    store.close()
    logger.info("LicenseDesk API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="LicenseDesk API",
    description="License assignment inventory reconciled against LDAP / Active Directory.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Access gate middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def access_gate(request: Request, call_next):
    """Apply the AccessGate decision before any route or static file runs.

    Denied requests never reach a handler; they get a 302 to the login page
    with the original path (sanitized) as ?next=. The authenticated username,
    if any, is exposed to handlers as request.state.username.
    """
    gate: Optional[AccessGate] = getattr(request.app.state, "gate", None)
    if gate is None:
        return JSONResponse(status_code=503, content=ErrorResponse(error="service is starting").model_dump())
    decision = gate.check(request)
    if not decision.allowed:
        return RedirectResponse(decision.redirect_to or "/login", status_code=302)
    request.state.username = decision.username
    return await call_next(request)


# ---------------------------------------------------------------------------
# Request logging middleware
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

app.include_router(licenses_router, prefix="/api", tags=["Licenses"])
app.include_router(directory_router, prefix="/api", tags=["Directory"])
app.include_router(meetings_router, prefix="/api", tags=["Meetings"])
# Web UI router and static files are mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"error": "<message>"} envelope.
# ---------------------------------------------------------------------------


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


@app.exception_handler(RateLimitExceeded)
def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with Retry-After when a rate limit is exceeded.

    Plain def: SlowAPIMiddleware calls this handler directly, without awaiting.
    """
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "Too many requests.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or wrong field types are a client error (400)."""
    details = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()))}: {err.get('msg', 'invalid')}" for err in exc.errors()
    )
    return _error(400, f"invalid request: {details}" if details else "invalid request")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    response = _error(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(InventoryError)
async def inventory_error_handler(request: Request, exc: InventoryError) -> JSONResponse:
    """UserNotFound / LicenseNotFound and friends: the client referenced something that is not there."""
    return _error(400, str(exc))


@app.exception_handler(DirectoryUnavailable)
async def directory_unavailable_handler(request: Request, exc: DirectoryUnavailable) -> JSONResponse:
    logger.warning("Directory unavailable on %s %s: %s", request.method, request.url.path, exc)
    return _error(503, "directory unavailable")


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The traceback goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Public (see auth.gate.PUBLIC_PATHS) and never rate limited.
# ---------------------------------------------------------------------------


@app.get("/healthz", tags=["Health"])
def health(request: Request) -> JSONResponse:
    """Liveness plus a database round-trip."""
    store: InventoryStore = request.app.state.store
    settings: Settings = request.app.state.settings
    try:
        store.ping()
        database = "ok"
    except Exception:
        logger.exception("Health check: database unreachable")
        database = "error"
    body = HealthResponse(
        status="ok" if database == "ok" else "error",
        version=VERSION,
        components={
            "database": database,
            "directory": "enabled" if settings.directory_enabled else "disabled",
        },
    )
    return JSONResponse(status_code=200 if database == "ok" else 503, content=body.model_dump())

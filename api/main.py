"""
api/main.py -- FastAPI application entry point for the VidStream account service.

Exposes user registration, login, token rotation and profile management over
HTTP. All account logic lives in auth.session.SessionManager; this module
wires it together and renders every failure as the same error envelope.

Run with:  uvicorn asgi:app --reload

Request path through the middleware, outside in:
  TrustedHostMiddleware  Host header must be in ALLOWED_HOSTS
  CORSMiddleware         credentialed CORS for CORS_ORIGINS
  SlowAPIMiddleware      route limits registered on api.limiter (login only)

Lifespan builds the store, token issuer, password hasher, media uploader and
session manager on startup and releases them on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.users import router as users_router
from auth.errors import AccountError
from auth.session import SessionManager
from auth.store import UserStore
from auth.tokens import PasswordHasher, TokenIssuer
from core.config import get_settings
from media.uploader import build_media_uploader

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("vidstream.api")

settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the service graph on startup; dispose of it on shutdown.

    Order: store first (the session manager needs it), then the stateless
    token issuer and hasher, then the media uploader, then the manager.
    """
    logger.info("VidStream account API starting up")
    app.state.settings = settings
    app.state.user_store = UserStore(db_url=settings.database_url)
    media = build_media_uploader(settings)
    if settings.media_backend == "local":
        settings.media_root.mkdir(parents=True, exist_ok=True)
    app.state.media = media
    app.state.sessions = SessionManager(
        app.state.user_store,
        TokenIssuer.from_settings(settings),
        PasswordHasher.from_settings(settings),
        media,
        revoke_sessions_on_password_change=settings.revoke_sessions_on_password_change,
    )
    logger.info(
        "Accounts initialized (media_backend=%s, revoke_on_password_change=%s)",
        settings.media_backend,
        settings.revoke_sessions_on_password_change,
    )

    yield

    close_media = getattr(media, "close", None)
    if close_media is not None:
        close_media()
    app.state.user_store.close()
    logger.info("VidStream account API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="VidStream Account API",
    description="User accounts, JWT sessions with refresh rotation, and profile media.",
    version=API_VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
# Routers and static media
# ---------------------------------------------------------------------------

app.include_router(users_router, prefix="/api/v1", tags=["Users"])

if settings.media_backend == "local":
    # Directory is created in lifespan; check_dir=False lets the app import first.
    app.mount("/media", StaticFiles(directory=settings.media_root, check_dir=False), name="media")


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every failure leaves as an ErrorResponse: status_code, success=false, and
# an error object with a stable code.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(
            status_code=status_code,
            error=ErrorDetail(code=code, message=message, detail=detail),
        ).model_dump(),
    )


@app.exception_handler(AccountError)
async def account_error_handler(request: Request, exc: AccountError) -> JSONResponse:
    """Render a business-rule failure raised by the session manager or media store."""
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
    return _error(exc.status_code, exc.code, exc.message)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with Retry-After when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when a request body or form fails schema validation."""
    return _error(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap router-level HTTP errors (404 unknown route, 405, ...) in the envelope."""
    response = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and a database probe."""
    try:
        request.app.state.user_store.has_users()
        database = "ok"
    except SQLAlchemyError:
        logger.exception("Health check database probe failed")
        database = "error"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )

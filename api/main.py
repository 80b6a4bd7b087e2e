"""
api/main.py -- The FastAPI app behind /api.

Run with:      uvicorn asgi:app --reload

Middleware, outermost first:
  log_requests           one access-log line per request
  SlowAPIMiddleware      per-route limits declared with api.limiter
  CORSMiddleware         browser origins from CORS_ORIGINS
  TrustedHostMiddleware  Host header must match ALLOWED_HOSTS

The lifespan opens both stores, creates the token blacklist and starts the
task that purges it; shutdown undoes the same steps.

Every error response, whatever raised it, has the shape
{"success": false, "error": "<message>"}.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.openapi.docs import get_redoc_html, get_swagger_ui_html
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import HealthResponse
from api.routes.auth import router as auth_router
from api.routes.device_tokens import router as device_tokens_router
from api.routes.family import router as family_router
from api.routes.logs import router as logs_router
from api.routes.settings import router as settings_router
from api.routes.voice import router as voice_router
from auth.dependencies import require_auth
from auth.models import AuthResult
from auth.store import AuthStore
from cache.blacklist import TokenBlacklist
from core.config import get_settings
from tracker.store import TrackerStore

VERSION = "0.3.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("babytracker.api")

_settings = get_settings()

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired entries from the token blacklist every BLACKLIST_PURGE_SECONDS.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine cleanly.
    """
    while True:
        await asyncio.sleep(_settings.blacklist_purge_seconds)
        removed = app.state.token_blacklist.purge_expired()
        if removed:
            logger.info("Purged %d expired blacklisted tokens", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores and the blacklist on startup; release them on shutdown.

    The blacklist is created before the purge task that reads it from
    app.state.
    """
    logger.info("Baby tracker API starting up (mode=%s)", _settings.deployment_mode)
    app.state.auth_store = AuthStore(_settings.database_url)
    app.state.tracker_store = TrackerStore(_settings.database_url)
    logger.info("Stores initialized")
    app.state.token_blacklist = TokenBlacklist()
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.auth_store.close()
    app.state.tracker_store.close()
    logger.info("Baby tracker API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Baby Tracker API",
    description="Feeding, sleep, diaper and medicine logging for families.",
    version=VERSION,
    lifespan=lifespan,
    # Built-in /docs and /redoc are replaced by auth-protected routes below.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Starlette runs the last-added middleware first.
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

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
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    # Kindle URLs carry the raw device token; never write it to the log.
    path = request.url.path
    if path.startswith(("/kindle/", "/link/")):
        path = path.rsplit("/", 1)[0] + "/<token>"
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(settings_router, prefix="/api", tags=["Settings"])
app.include_router(family_router, prefix="/api", tags=["Family"])
app.include_router(logs_router, prefix="/api", tags=["Logs"])
app.include_router(device_tokens_router, prefix="/api", tags=["Device Tokens"])
app.include_router(voice_router, prefix="/api", tags=["Voice"])
# asgi.py adds the kiosk router from web/.


# ---------------------------------------------------------------------------
# Auth-protected API documentation
# ---------------------------------------------------------------------------


@app.get("/docs", include_in_schema=False)
async def docs(auth: AuthResult = Depends(require_auth)):
    """Swagger UI for any signed-in user."""
    return get_swagger_ui_html(openapi_url="/openapi.json", title="Baby Tracker API")


@app.get("/redoc", include_in_schema=False)
async def redoc(auth: AuthResult = Depends(require_auth)):
    """ReDoc for any signed-in user."""
    return get_redoc_html(openapi_url="/openapi.json", title="Baby Tracker API")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same {"success": false, "error": ...} envelope so
# clients can parse errors uniformly without inspecting status codes.
# ---------------------------------------------------------------------------


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 when a rate limit is exceeded, with Retry-After in seconds."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = error_response(429, "Too many requests. Please try again later.")
    response.headers["Retry-After"] = str(retry_after)
    return response


def _format_validation_errors(errors: list[dict]) -> str:
    """Join pydantic errors as "field: message; field: message"."""
    parts = []
    for err in errors:
        # loc is ("body", "securityPin") or ("query", "id"); drop the location kind.
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        field = ".".join(loc) or "request"
        parts.append(f"{field}: {err.get('msg', 'invalid value')}")
    return "; ".join(parts)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a readable message when the body or query fails validation."""
    return error_response(400, _format_validation_errors(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Envelope for every HTTPException, including Starlette's own 404/405."""
    response = error_response(exc.status_code, str(exc.detail))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and answer with a generic 500.

    Exception text stays in the log.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return error_response(500, "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Registered on the app itself, outside every router, and exempt from rate
# limits. Not wrapped in the success envelope.
# ---------------------------------------------------------------------------


@app.get("/api/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)

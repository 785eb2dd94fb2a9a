"""
api/main.py -- FastAPI application entry point for Gatehouse.

Exposes credential checks and user/role administration over HTTP so other
services can delegate authentication without linking the library.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan opens the configured security store on startup (seeding the first
administrator when BOOTSTRAP_ADMIN_PASSWORD is set) and closes it on shutdown.

No tokens or sessions are issued. A successful POST /api/v1/auth/check
returns the user profile; the caller decides what to do with it.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.roles import router as roles_router
from api.routes.v1.users import router as users_router
from auth.errors import (
    AccountDisabled,
    BadCredentials,
    RoleAlreadyRegistered,
    SecurityError,
    Unauthorized,
    UnknownRole,
    UnknownUser,
    UserAlreadyRegistered,
)
from auth.factory import create_manager
from core.config import get_settings

API_VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=get_settings().log_level,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("gatehouse.api")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the security store for the server lifetime and close it on shutdown."""
    settings = get_settings()
    logger.info("Gatehouse API starting up (backend=%s)", settings.storage_backend)
    app.state.security = create_manager(settings)
    app.state.admin_api_key = settings.admin_api_key
    app.state.backend = settings.storage_backend

    yield

    app.state.security.close()
    logger.info("Gatehouse API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Gatehouse API",
    description="Password verification with lockout, and user/role administration.",
    version=API_VERSION,
    debug=get_settings().debug,
    lifespan=lifespan,
)

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=["localhost", "127.0.0.1", "*.localhost"],
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
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(users_router, prefix="/api/v1", tags=["Users"])
app.include_router(roles_router, prefix="/api/v1", tags=["Roles"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Most specific first: the first isinstance() match wins.
_SECURITY_STATUS: list[tuple[type[SecurityError], int, str]] = [
    (BadCredentials, 401, "bad_credentials"),
    (AccountDisabled, 403, "account_disabled"),
    (Unauthorized, 403, "unauthorized"),
    (UserAlreadyRegistered, 409, "user_already_registered"),
    (RoleAlreadyRegistered, 409, "role_already_registered"),
    (UnknownUser, 404, "unknown_user"),
    (UnknownRole, 404, "unknown_role"),
]


def _status_for(exc: SecurityError) -> tuple[int, str]:
    for kind, status, code in _SECURITY_STATUS:
        if isinstance(exc, kind):
            return status, code
    return 500, "security_error"


@app.exception_handler(SecurityError)
async def security_error_handler(request: Request, exc: SecurityError) -> JSONResponse:
    """Map each SecurityError kind to its HTTP status.

    Storage failures (plain SecurityError) become 500 and their message is
    logged, not returned: it can name files and database URLs.
    """
    status, code = _status_for(exc)
    if status == 500:
        logger.error("Security store failure on %s %s: %s", request.method, request.url.path, exc.message)
        message = "The security store is unavailable."
    else:
        message = exc.message
    response = JSONResponse(
        status_code=status,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )
    if request.url.path.endswith("/auth/check"):
        response.headers["Cache-Control"] = "no-store"
    return response


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
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
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
# Defined here rather than in a router so it is always reachable. Not rate
# limited: load balancers must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version and the configured storage backend."""
    backend = getattr(request.app.state, "backend", get_settings().storage_backend)
    return HealthResponse(version=API_VERSION, backend=backend)

"""
api/main.py -- FastAPI application entry point for Storekeeper auth.

Exposes the credential subsystem (registration, login, password reset) over
HTTP. The inventory endpoints live in their own service and consume the
bearer tokens issued here.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost):
  1. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  2. log_requests          -- one log line per request with latency

Lifespan handles startup (settings, store, service, reset purge task) and
shutdown (cancel and await purge task, close DB connection) symmetrically. A missing
JWT_SIGNING_KEY or CIPHER_KEY raises inside the lifespan, so the server
refuses to start instead of failing on the first request.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError, Unauthorized
from auth.service import AuthService, build_auth_service
from auth.store import CredentialStore
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("storekeeper.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(service: AuthService, interval_seconds: int) -> None:
    """Clear expired reset tokens every interval_seconds.

    Only reset-token fields are touched; credentials are never modified by
    housekeeping. The purge itself is a blocking DB call, so it runs in a
    worker thread. A failed pass is logged and retried on the next interval.
    CancelledError from task.cancel() during shutdown propagates out of the
    await and ends the coroutine.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(service.purge_expired_resets)
        except Exception:
            logger.exception("Reset token purge failed; retrying next interval")


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Startup order matters:
      1. Settings first -- validates both keys; raises if either is missing.
      2. Store second -- creates the schema if needed.
      3. Service third -- keys flow from Settings into the components here.
      4. Purge task last, and only when reset tokens have a TTL.
    """
    # Startup
    logger.info("Storekeeper auth API starting up")
    settings = get_settings()
    app.state.settings = settings
    if settings.debug:
        logging.getLogger("storekeeper").setLevel(logging.DEBUG)
    app.state.credential_store = CredentialStore(settings.database_url)
    app.state.auth_service = build_auth_service(settings, store=app.state.credential_store)
    logger.info(
        "Auth initialized (default_mode=%s, reset_ttl=%s)",
        settings.default_credential_mode,
        settings.reset_token_ttl or "none",
    )
    app.state.purge_task = None
    if settings.reset_token_ttl:
        app.state.purge_task = asyncio.create_task(
            _purge_loop(app.state.auth_service, settings.reset_purge_interval_seconds)
        )

    yield

    # Shutdown
    if app.state.purge_task is not None:
        app.state.purge_task.cancel()
        # Wait for an in-flight purge to finish before the engine is disposed.
        with contextlib.suppress(asyncio.CancelledError):
            await app.state.purge_task
    app.state.credential_store.close()
    logger.info("Storekeeper auth API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Storekeeper Auth API",
    description="Account registration, login and password reset for the Storekeeper inventory app.",
    version=API_VERSION,
    lifespan=lifespan,
)

app.add_middleware(SlowAPIMiddleware)

# Attach the shared limiter to app.state so SlowAPIMiddleware can locate it.
# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter

# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. Only method, path, status and latency are logged -- never bodies,
# which carry passwords and reset tokens.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    path = request.url.path
    if path.startswith("/api/v1/auth/change-password/"):
        path = "/api/v1/auth/change-password/<token>"
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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render credential-subsystem failures.

    Unauthorized (and UnknownAccount, which subclasses it) always produces
    the same generic body, so a client cannot tell an unknown email from a
    wrong password or an unknown reset token.
    """
    if isinstance(exc, Unauthorized):
        content = ErrorResponse(error=ErrorDetail(code="unauthorized", message="Invalid credentials."))
        return JSONResponse(
            status_code=401,
            content=content.model_dump(exclude_none=True),
            headers={"Cache-Control": "no-store"},
        )
    return JSONResponse(status_code=exc.http_status_code, content={"error": exc.to_dict()})


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded.

    Retry-After tells clients exactly how many seconds to wait before retrying.
    slowapi stores this on the exception as exc.retry_after (int seconds).
    """
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
    """Return 422 naming the invalid fields. Input values are not echoed back."""
    fields = [
        {"field": ".".join(str(p) for p in err.get("loc", ())[1:]), "reason": err.get("msg", "")}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="invalid_input",
                message="Request validation failed.",
                detail=fields,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route dependencies raise HTTPException with a dict detail. When detail is
    already a structured dict, use it directly as the error field rather than
    stringifying it -- str(dict) produces a Python repr, not JSON.
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

    Security note: the raw exception is written to the log only, never to the
    response body. The client receives only a generic message.
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
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied -- health
# checks from load balancers and monitoring systems must not be throttled.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version, and database reachability."""
    database = "ok"
    try:
        request.app.state.credential_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        database = "error"
    return HealthResponse(
        status="healthy",
        version=API_VERSION,
        components={"app": "ok", "database": database},
    )

"""
api/main.py -- HTTP front of the coursework auth service.

Puts the auth core (password sign-in, registration, refresh rotation, logout,
Google sign-in) behind a FastAPI app used by the course-management frontend.

Serve with:    uvicorn asgi:app --reload

Middleware, as a request meets it (add_middleware wraps, so the last one
added runs first):
  SlowAPIMiddleware      applies the route limits declared in api.limiter
  CORSMiddleware         answers preflights and tags responses for the frontend
  TrustedHostMiddleware  drops requests whose Host is not in ALLOWED_HOSTS

On startup the lifespan builds the AuthService (engine, schema) and starts
the session purge task; on shutdown it stops the task and disposes the engine.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.errors import auth_error_response
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.service import AuthService
from core.config import get_settings

API_VERSION = "0.1.0"
PURGE_INTERVAL_SECONDS = 6 * 60 * 60

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("coursework.api")

settings = get_settings()


async def _purge_loop(app: FastAPI) -> None:
    """Every PURGE_INTERVAL_SECONDS, drop refresh sessions that can never be used again.

    Shutdown cancels the task while it sleeps. A failed pass is logged and
    the next one tries again.
    """
    while True:
        await asyncio.sleep(PURGE_INTERVAL_SECONDS)
        try:
            removed = await app.state.auth.sessions.purge_expired()
        except SQLAlchemyError:
            logger.exception("Session purge failed")
            continue
        if removed:
            logger.info("Purged %d expired sessions", removed)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the AuthService and the purge task for the life of the process.

    The service is built before the task starts: AuthService.create() makes
    the schema, and the purge loop reads app.state.auth.
    """
    logger.info("Coursework auth API starting up")
    app.state.auth = await AuthService.create(settings)
    logger.info(
        "Auth initialized (google_enabled=%s, auto_provision=%s)",
        settings.google_enabled,
        settings.google_auto_provision,
    )
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    await app.state.auth.close()
    logger.info("Coursework auth API shutdown complete")


app = FastAPI(
    title="Coursework Auth API",
    description="Password and Google sign-in, refresh-token sessions for the course-management platform.",
    version=API_VERSION,
    lifespan=lifespan,
    # Interactive docs only in debug builds.
    docs_url="/docs" if settings.debug else None,
    redoc_url=None,
)

# Each add_middleware call wraps the previous stack; SlowAPI ends up outermost.
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.allowed_hosts)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    # The frontend sends the refresh cookie with credentialed fetches.
    allow_credentials=True,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)
app.add_middleware(SlowAPIMiddleware)
app.state.limiter = limiter


@app.middleware("http")
async def access_log(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "%s %s -> %d in %.1fms (%s)",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else "-",
    )
    return response


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Error envelope
#
# Every failure leaves the service as {"error": {"code", "message", "detail"}}.
# ---------------------------------------------------------------------------


def _envelope(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render auth-core failures with their own status and code."""
    return auth_error_response(exc)


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Storage failures surface as a generic 500; the driver error stays in the log."""
    logger.exception("Storage error on %s %s", request.method, request.url.path)
    return _envelope(500, "storage_error", "A storage error occurred.")


@app.exception_handler(RateLimitExceeded)
async def rate_limited_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    wait = int(getattr(exc, "retry_after", 60))
    return _envelope(
        429,
        "rate_limited",
        "Too many attempts, slow down.",
        detail=str(exc),
        headers={"Retry-After": str(wait)},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies and query strings become a 422 validation_error."""
    return _envelope(422, "validation_error", "The request was not well formed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPException in the error envelope.

    Dependencies such as get_current_user raise with a ready-made dict detail,
    which is passed through as the error object.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _envelope(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last resort: log the traceback, answer with an opaque 500."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _envelope(500, "internal_error", "An unexpected error occurred.")


# Health stays outside the limiter so load balancer checks are never throttled.
@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and a database round-trip check."""
    components = {"app": "ok", "database": "ok"}
    service: AuthService = request.app.state.auth
    try:
        async with service.users.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=API_VERSION, components=components)

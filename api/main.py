"""
api/main.py -- FastAPI application entry point for SSO.

Exposes AuthService over HTTP. The transport owns nothing but request
validation, deadlines and the mapping from service errors to status codes.

Run with:  python main.py serve
           uvicorn asgi:app

Lifespan handles startup (settings, logging, store, service) and shutdown
(dispose of the store's connection pool) symmetrically. uvicorn translates
SIGINT/SIGTERM into lifespan shutdown, so in-flight requests finish before
the store is closed.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AuthError,
    InvalidAppIDError,
    InvalidCredentialsError,
    OperationError,
    UserExistsError,
    UserNotFoundError,
)
from auth.service import AuthService
from auth.store import SqlStore
from core.config import get_settings
from core.logging_config import setup_logging

__version__ = "1.0.0"

logger = logging.getLogger("sso.api")

# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Settings are loaded first: a missing STORAGE_PATH or TOKEN_TTL raises
    here and uvicorn refuses to start, instead of serving with a half-built
    service.
    """
    settings = get_settings()
    setup_logging(settings.env)
    logger.info("SSO API starting up (env=%s)", settings.env)

    store = SqlStore(settings.storage_path)
    app.state.settings = settings
    app.state.store = store
    app.state.auth_service = AuthService(store, store, store, token_ttl=settings.token_ttl)
    logger.info("Auth service initialized (token_ttl=%s)", settings.token_ttl)

    yield

    store.close()
    logger.info("SSO API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SSO API",
    description="Credential authentication and per-application token issuance.",
    version=__version__,
    lifespan=lifespan,
)


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

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

# Most specific first; the first isinstance match wins.
_AUTH_ERROR_STATUS: list[tuple[type[AuthError], int, str]] = [
    (InvalidCredentialsError, 401, "invalid_credentials"),
    (UserExistsError, 409, "user_exists"),
    (UserNotFoundError, 404, "user_not_found"),
    (InvalidAppIDError, 400, "invalid_app_id"),
    (OperationError, 500, "internal_error"),
]


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map service errors to status codes.

    OperationError messages can contain store or driver text, so the client
    only ever sees the generic message; the full error was already logged by
    AuthService.
    """
    for error_cls, status_code, code in _AUTH_ERROR_STATUS:
        if isinstance(exc, error_cls):
            break
    else:
        status_code, code = 500, "internal_error"
    if status_code >= 500:
        return _error_response(status_code, code, "An unexpected error occurred.")
    return _error_response(status_code, code, exc.message)


@app.exception_handler(TimeoutError)
async def deadline_handler(request: Request, exc: TimeoutError) -> JSONResponse:
    logger.warning("Deadline exceeded on %s %s", request.method, request.url.path)
    return _error_response(504, "deadline_exceeded", "Request deadline exceeded.")


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or path params fail validation."""
    return _error_response(422, "validation_error", "Request validation failed.", str(exc.errors()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=__version__)

"""
api/main.py -- FastAPI application entry point for AdminConsole.

Run with:  uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. TrustedHostMiddleware -- rejects requests with unexpected Host headers
  2. CORSMiddleware        -- adds CORS headers for allowed browser origins
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter

Lifespan builds the object graph once per process (store, hasher, codec,
services) and hangs it on app.state. Route handlers and the auth guards only
ever read from app.state; nothing in auth/ holds module-level singletons.
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
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.audit import router as audit_router
from api.routes.v1.auth import router as auth_router
from api.routes.v1.dashboard import router as dashboard_router
from api.routes.v1.profile import router as profile_router
from api.routes.v1.users import router as users_router
from auth.audit import AuditTrail
from auth.passwords import PasswordHasher
from auth.reset import PasswordResetManager
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenCodec
from auth.users import UserService
from core.config import Settings, get_settings
from core.errors import AppError, InvalidCredentials, NotFound, Unauthorized, ValidationError

__version__ = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("adminconsole.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Object graph
# ---------------------------------------------------------------------------


def init_app_state(app: FastAPI, store: UserStore, settings: Settings) -> None:
    """Wire the auth core onto app.state.

    Shared by the real lifespan and the test fixtures so both run the exact
    same graph, differing only in the store and settings handed in.
    """
    hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
    codec = TokenCodec(settings.secret_key, expire_seconds=settings.token_expire_seconds)
    audit = AuditTrail(store)

    app.state.settings = settings
    app.state.user_store = store
    app.state.password_hasher = hasher
    app.state.token_codec = codec
    app.state.audit = audit
    app.state.auth_service = AuthService(store, hasher, codec, audit)
    app.state.user_service = UserService(store, hasher, audit)
    app.state.reset_manager = PasswordResetManager(
        store, hasher, audit, expire_seconds=settings.reset_token_expire_seconds
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open the store on startup and dispose of it on shutdown."""
    logger.info("AdminConsole API starting up")
    store = UserStore(db_url=_settings.database_url)
    init_app_state(app, store, _settings)
    logger.info("Auth initialized (bcrypt_rounds=%d, debug=%s)", _settings.bcrypt_rounds, _settings.debug)

    yield

    app.state.user_store.close()
    logger.info("AdminConsole API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="AdminConsole API",
    description="User administration, profiles, password resets, and an audit trail.",
    version=__version__,
    lifespan=lifespan,
)

# Register in the order you want the request to encounter them:
# TrustedHost -> CORS -> SlowAPI.
app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
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
app.include_router(profile_router, prefix="/api/v1", tags=["Profile"])
app.include_router(audit_router, prefix="/api/v1", tags=["Audit"])
app.include_router(dashboard_router, prefix="/api/v1", tags=["Dashboard"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, detail: ErrorDetail) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=detail).model_dump(exclude_none=True),
    )


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Translate a typed service error into its status code and envelope."""
    response = _error_response(exc.status_code, ErrorDetail(**exc.to_dict()))
    if isinstance(exc, (Unauthorized, InvalidCredentials)):
        response.headers["WWW-Authenticate"] = "Bearer"
    if isinstance(exc, InvalidCredentials):
        response.headers["Cache-Control"] = "no-store"
    if exc.status_code >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc)
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = exc.limit.limit.get_expiry() if exc.limit is not None else 60
    response = _error_response(429, ErrorDetail(code="rate_limited", message="Too many requests."))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with per-field messages when the body or query fails validation."""
    fields: dict[str, list[str]] = {}
    for err in exc.errors():
        loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
        key = ".".join(loc) or "body"
        fields.setdefault(key, []).append(err.get("msg", "Invalid value."))
    error = ValidationError(fields=fields)
    return _error_response(error.status_code, ErrorDetail(**error.to_dict()))


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Wrap framework-raised HTTP errors (404 route, 405 method) in the envelope."""
    code = NotFound.code if exc.status_code == 404 else f"http_{exc.status_code}"
    return _error_response(exc.status_code, ErrorDetail(code=code, message=str(exc.detail)))


@app.exception_handler(SQLAlchemyError)
async def store_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    """Store failures surface as a generic 500. Details stay in the server log."""
    logger.exception("Store failure on %s %s", request.method, request.url.path)
    return _error_response(500, ErrorDetail(code="internal_error", message="An unexpected error occurred."))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception is written to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, ErrorDetail(code="internal_error", message="An unexpected error occurred."))


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. No rate limit applied.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"], response_model=HealthResponse)
def health(request: Request) -> HealthResponse:
    """Return API liveness, version, and database reachability."""
    database = "ok"
    try:
        request.app.state.user_store.ping()
    except SQLAlchemyError:
        logger.exception("Health check could not reach the database")
        database = "error"
    status = "healthy" if database == "ok" else "degraded"
    return HealthResponse(status=status, version=__version__, components={"app": "ok", "database": database})

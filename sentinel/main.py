from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pythonjsonlogger.json import JsonFormatter
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import settings
from .database import Base, engine
from .errors import RateLimitExceeded, StorageError, ValidationError
from .middleware import (
    AccessControlMiddleware,
    CsrfCookieMiddleware,
    HTTPSEnforcementMiddleware,
    LoginRateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from .rate_limit import FixedWindowRateLimiter, rate_limit_exceeded_handler
from .api import routes_admin
from .auth.core import PasswordHasher
from .auth.routes_auth import router as auth_router
from .auth.seed import seed_admin
from .auth.service import AuthenticationService
from .auth.sessions import SessionRegistry
from .auth.store import CredentialStore
from . import models as _models  # noqa: F401 — register tables

# ---------------------------------------------------------------------------
# Structured logging
# ---------------------------------------------------------------------------

def _configure_logging() -> None:
    """Configure structured JSON logging when log_format=json (default)."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if settings.log_format == "json":
        formatter = JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        )
    else:
        formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(formatter)
    root.addHandler(handler)

_configure_logging()

# Initialise database tables on startup
Base.metadata.create_all(bind=engine)

# ---------------------------------------------------------------------------
# Lightweight schema migration — add lockout columns that create_all()
# won't add to a users table created by an earlier release.
# ---------------------------------------------------------------------------
def _run_migrations() -> None:
    """Add any columns introduced after the initial schema."""
    from sqlalchemy import inspect as sa_inspect, text

    inspector = sa_inspect(engine)
    log = logging.getLogger("sentinel.migrations")

    # Map: table_name -> list of (column_name, DDL type string)
    _ADDITIONS = {
        "users": [
            ("failed_login_attempts", "INTEGER NOT NULL DEFAULT 0"),
            ("account_non_locked", "BOOLEAN NOT NULL DEFAULT TRUE"),
            ("login_count", "INTEGER NOT NULL DEFAULT 0"),
        ],
    }

    with engine.connect() as conn:
        for table, columns in _ADDITIONS.items():
            if not inspector.has_table(table):
                continue
            existing = {c["name"] for c in inspector.get_columns(table)}
            for col_name, col_type in columns:
                if col_name in existing:
                    continue
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {col_name} {col_type}"))
                conn.commit()
                log.info("Migration: added %s.%s (%s)", table, col_name, col_type)


_run_migrations()

# ---------------------------------------------------------------------------
# Service wiring — owned by the application, shared by every request
# ---------------------------------------------------------------------------

hasher = PasswordHasher(rounds=settings.bcrypt_rounds)
credential_store = CredentialStore()
session_registry = SessionRegistry(
    ttl_seconds=settings.session_expire_minutes * 60,
    conflict_strategy=settings.session_conflict_strategy,
)
login_limiter = FixedWindowRateLimiter(
    max_requests=settings.login_rate_limit_max_requests,
    window_seconds=settings.login_rate_limit_window_seconds,
    sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
)
auth_service = AuthenticationService(
    store=credential_store,
    hasher=hasher,
    sessions=session_registry,
    max_failed_attempts=settings.max_failed_login_attempts,
)

# Seed bootstrap admin if no users exist
seed_admin(credential_store, hasher)


@asynccontextmanager
async def lifespan(app: FastAPI):
    login_limiter.start()
    try:
        yield
    finally:
        login_limiter.close()
        session_registry.clear()


app = FastAPI(
    title="Sentinel",
    version="1.0.0",
    description=(
        "Credential-authentication gateway: registration, login with "
        "per-client throttling and account lockout, and session-based "
        "access control for protected routes."
    ),
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

app.state.limiter = login_limiter
app.state.sessions = session_registry
app.state.auth_service = auth_service

# ---------------------------------------------------------------------------
# Error handling
# ---------------------------------------------------------------------------

_log = logging.getLogger("sentinel.errors")


@app.exception_handler(ValidationError)
def _validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    _log.info("Validation failed on %s: %s", request.url.path, exc.reason)
    return JSONResponse(status_code=400, content={"error": exc.reason})


@app.exception_handler(RequestValidationError)
def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    # Field locations only; submitted values stay out of logs and responses
    locations = [".".join(str(part) for part in err.get("loc", ())) for err in exc.errors()]
    _log.info("Malformed request on %s: %s", request.url.path, ", ".join(locations))
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


@app.exception_handler(StorageError)
def _storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    _log.error("Storage failure on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.exception_handler(StarletteHTTPException)
def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail},
        headers=getattr(exc, "headers", None),
    )


app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# ---------------------------------------------------------------------------
# Middleware — added innermost first; SecurityHeaders ends up outermost
# ---------------------------------------------------------------------------

app.add_middleware(AccessControlMiddleware, sessions=session_registry)
app.add_middleware(
    LoginRateLimitMiddleware,
    limiter=login_limiter,
    trust_proxy_headers=settings.trust_proxy_headers,
)
app.add_middleware(CsrfCookieMiddleware, cookie_name=settings.csrf_cookie_name)
app.add_middleware(
    HTTPSEnforcementMiddleware,
    enabled=settings.enforce_https,
    local_hosts=settings.local_hosts,
    trust_proxy_headers=settings.trust_proxy_headers,
)
if settings.allow_cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allow_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
app.add_middleware(SecurityHeadersMiddleware, hsts_max_age=settings.hsts_max_age_seconds)

app.include_router(auth_router)
app.include_router(routes_admin.router)


@app.get("/health", tags=["meta"])
def health() -> dict:
    return {"status": "healthy"}


@app.get("/healthz", tags=["meta"])
def healthz() -> dict:
    """Lightweight health check for load balancer probes."""
    return {"status": "ok"}

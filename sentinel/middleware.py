"""Middleware for transport security, login throttling and route access control."""
from __future__ import annotations

import logging
from typing import Iterable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, RedirectResponse, Response
from starlette.types import ASGIApp

from .auth.core import generate_csrf_token
from .auth.dependencies import RouteAccess, classify_path, resolve_principal
from .auth.sessions import SessionRegistry
from .errors import RateLimitExceeded
from .rate_limit import FixedWindowRateLimiter, client_identifier, rate_limit_exceeded_handler

logger = logging.getLogger("sentinel.middleware")

LOGIN_PATH = "/login"
LOGIN_PROCESSING_PATH = "/api/login"


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach anti-framing, HSTS and referrer headers to every response."""

    def __init__(self, app: ASGIApp, hsts_max_age: int = 31536000) -> None:
        super().__init__(app)
        self.hsts = f"max-age={hsts_max_age}; includeSubDomains"

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Strict-Transport-Security"] = self.hsts
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["X-Content-Type-Options"] = "nosniff"
        return response


class HTTPSEnforcementMiddleware(BaseHTTPMiddleware):
    """Redirect plain-HTTP requests for non-local hosts to https (308 keeps the method)."""

    def __init__(
        self,
        app: ASGIApp,
        enabled: bool = True,
        local_hosts: Iterable[str] = ("localhost", "127.0.0.1", "::1"),
        trust_proxy_headers: bool = False,
    ) -> None:
        super().__init__(app)
        self.enabled = enabled
        self.local_hosts = frozenset(local_hosts)
        self.trust_proxy_headers = trust_proxy_headers

    def _scheme(self, request: Request) -> str:
        if self.trust_proxy_headers:
            forwarded = request.headers.get("x-forwarded-proto")
            if forwarded:
                return forwarded.split(",")[0].strip().lower()
        return request.url.scheme

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self.enabled and self._scheme(request) == "http":
            if request.url.hostname not in self.local_hosts:
                target = request.url.replace(scheme="https")
                return RedirectResponse(url=str(target), status_code=308)
        return await call_next(request)


class CsrfCookieMiddleware(BaseHTTPMiddleware):
    """Hand out a CSRF token cookie to clients that do not have one yet."""

    def __init__(self, app: ASGIApp, cookie_name: str = "XSRF-TOKEN") -> None:
        super().__init__(app)
        self.cookie_name = cookie_name

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        response = await call_next(request)
        if not request.cookies.get(self.cookie_name):
            # Readable by scripts so they can echo it in the X-XSRF-TOKEN header
            response.set_cookie(
                self.cookie_name,
                generate_csrf_token(),
                httponly=False,
                secure=True,
                samesite="lax",
                path="/",
            )
        return response


class LoginRateLimitMiddleware(BaseHTTPMiddleware):
    """Admission control for POST /api/login; throttled requests never reach verification."""

    def __init__(
        self,
        app: ASGIApp,
        limiter: FixedWindowRateLimiter,
        trust_proxy_headers: bool = False,
    ) -> None:
        super().__init__(app)
        self.limiter = limiter
        self.trust_proxy_headers = trust_proxy_headers

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "POST" and request.url.path == LOGIN_PROCESSING_PATH:
            client_id = client_identifier(request, self.trust_proxy_headers)
            try:
                self.limiter.check(client_id)
            except RateLimitExceeded as exc:
                return rate_limit_exceeded_handler(request, exc)
        return await call_next(request)


class AccessControlMiddleware(BaseHTTPMiddleware):
    """
    Resolve the session principal for every request and gate protected
    routes: anonymous callers are sent to the login page, authenticated
    callers without the admin role get 403 on /admin.
    """

    def __init__(self, app: ASGIApp, sessions: SessionRegistry) -> None:
        super().__init__(app)
        self.sessions = sessions

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        principal = resolve_principal(request, self.sessions)
        request.state.principal = principal

        access = classify_path(request.url.path)
        if access is RouteAccess.PUBLIC:
            return await call_next(request)
        if principal is None:
            return RedirectResponse(url=LOGIN_PATH, status_code=302)
        if access is RouteAccess.ADMIN and principal.role != "admin":
            logger.warning("Forbidden: %s requested %s", principal.username, request.url.path)
            return JSONResponse(status_code=403, content={"error": "Forbidden"})
        return await call_next(request)

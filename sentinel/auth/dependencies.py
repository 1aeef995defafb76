from __future__ import annotations

import secrets
from enum import Enum
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError

from .core import decode_session_token
from .service import AuthenticationService
from .sessions import SessionRecord, SessionRegistry
from ..config import settings


# ---------------------------------------------------------------------------
# Route classification
# ---------------------------------------------------------------------------

class RouteAccess(str, Enum):
    PUBLIC = "public"
    AUTHENTICATED = "authenticated"
    ADMIN = "admin"


PUBLIC_PATHS = frozenset({
    "/", "/login", "/register", "/logout",
    "/api/register", "/api/login",
    "/health", "/healthz",
    "/docs", "/redoc", "/openapi.json",
})
PUBLIC_PREFIXES = ("/css/", "/js/", "/images/")
ADMIN_PREFIX = "/admin"


def classify_path(path: str) -> RouteAccess:
    """Anything not explicitly public needs a session; /admin needs the admin role."""
    if path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES):
        return RouteAccess.PUBLIC
    if path == ADMIN_PREFIX or path.startswith(ADMIN_PREFIX + "/"):
        return RouteAccess.ADMIN
    return RouteAccess.AUTHENTICATED


# ---------------------------------------------------------------------------
# Resolve current principal from the session cookie
# ---------------------------------------------------------------------------

def resolve_principal(request: Request, sessions: SessionRegistry) -> Optional[SessionRecord]:
    token = request.cookies.get(settings.session_cookie_name)
    if not token:
        return None
    try:
        payload = decode_session_token(token)
    except JWTError:
        return None
    record = sessions.resolve(payload.get("sid", ""))
    if record is None or record.username != payload.get("sub"):
        return None
    return record


def get_session_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


def get_auth_service(request: Request) -> AuthenticationService:
    return request.app.state.auth_service


def get_current_principal(
    request: Request,
    sessions: SessionRegistry = Depends(get_session_registry),
) -> SessionRecord:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        principal = resolve_principal(request, sessions)
    if principal is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED,
                            detail="Authentication required.")
    return principal


# ---------------------------------------------------------------------------
# Role guards
# ---------------------------------------------------------------------------

def require_admin(principal: SessionRecord = Depends(get_current_principal)) -> SessionRecord:
    if principal.role != "admin":
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Forbidden")
    return principal


# ---------------------------------------------------------------------------
# CSRF (double-submit cookie)
# ---------------------------------------------------------------------------

async def require_csrf(request: Request) -> None:
    """
    The token from the CSRF cookie must be echoed back in the
    X-XSRF-TOKEN header or the _csrf form field.
    """
    expected = request.cookies.get(settings.csrf_cookie_name)
    supplied = request.headers.get(settings.csrf_header_name)
    if not supplied:
        content_type = request.headers.get("content-type", "")
        if content_type.startswith(("application/x-www-form-urlencoded", "multipart/form-data")):
            form = await request.form()
            value = form.get(settings.csrf_form_field)
            supplied = value if isinstance(value, str) else None
    if not expected or not supplied or not secrets.compare_digest(expected, supplied):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN,
                            detail="Invalid CSRF token")

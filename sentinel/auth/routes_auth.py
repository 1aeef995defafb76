import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import RedirectResponse
from pydantic import BaseModel

from .core import create_session_token
from .dependencies import get_auth_service, get_current_principal, require_csrf
from .service import AuthenticationService
from .sessions import SessionRecord
from ..config import settings
from ..errors import AuthenticationError
from ..rate_limit import client_identifier

logger = logging.getLogger("sentinel.auth")

router = APIRouter(tags=["auth"])

LOGIN_ERROR_MESSAGE = "Invalid username or password"
LOGOUT_MESSAGE = "You have been logged out successfully"


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------

class RegistrationRequest(BaseModel):
    # Missing fields fall through to the validator so they get its message
    username: Optional[str] = None
    password: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class LoginPage(BaseModel):
    page: str = "login"
    error: Optional[str] = None
    message: Optional[str] = None


class DashboardResponse(BaseModel):
    username: str
    role: str


# ---------------------------------------------------------------------------
# Pages
# ---------------------------------------------------------------------------

@router.get("/", include_in_schema=False)
def index() -> RedirectResponse:
    return RedirectResponse(url="/login", status_code=302)


@router.get("/login", response_model=LoginPage)
def login_page(error: Optional[str] = None, logout: Optional[str] = None) -> LoginPage:
    return LoginPage(
        error=LOGIN_ERROR_MESSAGE if error is not None else None,
        message=LOGOUT_MESSAGE if logout is not None else None,
    )


@router.get("/register")
def register_page() -> dict:
    return {"page": "register"}


@router.get("/dashboard", response_model=DashboardResponse)
def dashboard(principal: SessionRecord = Depends(get_current_principal)) -> DashboardResponse:
    return DashboardResponse(username=principal.username, role=principal.role)


# ---------------------------------------------------------------------------
# Registration (JSON API, exempt from CSRF)
# ---------------------------------------------------------------------------

@router.post("/api/register", response_model=MessageResponse)
def register(
    body: RegistrationRequest,
    service: AuthenticationService = Depends(get_auth_service),
) -> MessageResponse:
    logger.info("Registration attempt for username: %r", body.username)
    service.register(body.username, body.password)
    return MessageResponse(message="User registered successfully")


# ---------------------------------------------------------------------------
# Login / logout (form posts, CSRF protected)
# ---------------------------------------------------------------------------

@router.post("/api/login", dependencies=[Depends(require_csrf)])
def login(
    request: Request,
    username: str = Form(""),
    password: str = Form(""),
    service: AuthenticationService = Depends(get_auth_service),
) -> RedirectResponse:
    ip = client_identifier(request, settings.trust_proxy_headers)
    user_agent = request.headers.get("user-agent", "")
    try:
        record = service.authenticate(username, password, ip, user_agent)
    except AuthenticationError:
        # Same answer for every cause; the real one is in the audit trail
        return RedirectResponse(url="/login?error=true", status_code=303)

    response = RedirectResponse(url="/dashboard", status_code=303)
    response.set_cookie(
        settings.session_cookie_name,
        create_session_token(record.session_id, record.username),
        max_age=settings.session_expire_minutes * 60,
        httponly=True,
        secure=True,
        samesite="lax",
        path="/",
    )
    return response


@router.post("/logout", dependencies=[Depends(require_csrf)])
def logout(
    request: Request,
    service: AuthenticationService = Depends(get_auth_service),
) -> RedirectResponse:
    principal: Optional[SessionRecord] = getattr(request.state, "principal", None)
    if principal is not None:
        service.logout(principal.session_id)
    response = RedirectResponse(url="/login?logout=true", status_code=303)
    response.delete_cookie(settings.session_cookie_name, path="/")
    return response

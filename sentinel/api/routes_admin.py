from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from ..auth.dependencies import get_auth_service, get_session_registry, require_admin, require_csrf
from ..auth.service import AuthenticationService
from ..auth.sessions import SessionRecord, SessionRegistry

router = APIRouter(prefix="/admin", tags=["admin"])


class UserRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    username: str
    role: str
    failed_login_attempts: int
    account_non_locked: bool
    created_at: datetime
    last_login_at: Optional[datetime] = None
    login_count: int = 0


class LoginHistoryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    username: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    outcome: str
    reason: Optional[str] = None
    created_at: datetime


class SessionRead(BaseModel):
    username: str
    role: str
    created_at: datetime
    expires_at: datetime


@router.get("/users", response_model=List[UserRead])
def list_users(
    _admin: SessionRecord = Depends(require_admin),
    service: AuthenticationService = Depends(get_auth_service),
) -> List[UserRead]:
    return [UserRead.model_validate(u) for u in service.store.list_users()]


@router.post(
    "/users/{username}/unlock",
    response_model=UserRead,
    dependencies=[Depends(require_csrf)],
)
def unlock_user(
    username: str,
    _admin: SessionRecord = Depends(require_admin),
    service: AuthenticationService = Depends(get_auth_service),
) -> UserRead:
    """Clear the lockout flag and failure counter for a user."""
    if not service.store.unlock_account(username):
        raise HTTPException(status_code=404, detail="User not found.")
    return UserRead.model_validate(service.store.find_by_username(username))


@router.get("/login-history", response_model=List[LoginHistoryRead])
def login_history(
    limit: int = Query(100, ge=1, le=1000),
    _admin: SessionRecord = Depends(require_admin),
    service: AuthenticationService = Depends(get_auth_service),
) -> List[LoginHistoryRead]:
    """Return recent login attempts across all users, newest first."""
    rows = service.store.recent_login_history(limit)
    return [LoginHistoryRead.model_validate(r) for r in rows]


@router.get("/sessions", response_model=List[SessionRead])
def active_sessions(
    _admin: SessionRecord = Depends(require_admin),
    sessions: SessionRegistry = Depends(get_session_registry),
) -> List[SessionRead]:
    return [
        SessionRead(
            username=r.username,
            role=r.role,
            created_at=datetime.fromtimestamp(r.created_at, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(r.expires_at, tz=timezone.utc),
        )
        for r in sessions.active()
    ]

"""
service.py — Registration and login orchestration
==================================================
Credential checks, failure counting, lockout and session issue for one
login attempt. Every failure leaves through AuthenticationError with an
internal reason; the route turns all of them into the same generic
client response so nothing reveals whether a username exists.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

from ..errors import AuthenticationError, StorageError
from ..models import User
from ..telemetry.logger import log_login_attempt
from .core import PasswordHasher
from .sessions import SessionRecord, SessionRegistry
from .store import CredentialStore
from .validation import RegistrationValidator

logger = logging.getLogger("sentinel.auth")


class AuthenticationService:
    def __init__(
        self,
        store: CredentialStore,
        hasher: PasswordHasher,
        sessions: SessionRegistry,
        max_failed_attempts: int = 5,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.store = store
        self.hasher = hasher
        self.sessions = sessions
        self.validator = RegistrationValidator(store)
        self.max_failed_attempts = max_failed_attempts
        self._clock = clock
        self._dummy_hash: Optional[str] = None

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, username: Optional[str], password: Optional[str]) -> User:
        validated = self.validator.validate(username, password)
        user = User(
            username=validated.username,
            password_hash=self.hasher.hash(validated.password),
            role="user",
            failed_login_attempts=0,
            account_non_locked=True,
            created_at=self._clock(),
        )
        self.store.save(user)
        logger.info("New user registered: %s", validated.username)
        return user

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def _burn_hash_time(self, password: str) -> None:
        # Unknown usernames still pay one bcrypt verification
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash("sentinel-timing-equaliser")
        self.hasher.verify(password, self._dummy_hash)

    def authenticate(
        self,
        username: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> SessionRecord:
        def fail(reason: str, user_id: Optional[int] = None) -> AuthenticationError:
            log_login_attempt(username, "failure", reason, user_id, ip_address, user_agent)
            return AuthenticationError(reason)

        user = self.store.find_by_username(username)
        if user is None:
            self._burn_hash_time(password)
            raise fail("unknown_user")

        if not user.account_non_locked:
            logger.warning("Login attempt on locked account: %s", username)
            self._burn_hash_time(password)
            raise fail("locked", user.id)

        if not self.hasher.verify(password, user.password_hash):
            attempts = self.store.increment_failed_login_attempts(username)
            if attempts >= self.max_failed_attempts:
                self.store.lock_account(username)
                logger.warning(
                    "Account locked after %d failed login attempts: %s", attempts, username
                )
            raise fail("bad_password", user.id)

        try:
            record = self.sessions.issue(user.username, user.role)
        except AuthenticationError as exc:
            logger.warning("Login rejected, user already has an active session: %s", username)
            raise fail(exc.reason, user.id) from exc

        try:
            self.store.update_last_login_time(user.username, self._clock())
        except StorageError:
            # Do not leave a live session behind a failed login
            self.sessions.revoke(record.session_id)
            raise
        log_login_attempt(username, "success", None, user.id, ip_address, user_agent)
        return record

    def logout(self, session_id: str) -> None:
        if self.sessions.revoke(session_id):
            logger.info("Session ended")

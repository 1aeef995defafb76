"""
store.py — Credential store over the users table
=================================================
Every mutation is a single parameterised UPDATE scoped to one username,
so row-level consistency is left to the database engine and different
users never contend in-process.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..database import db_session
from ..errors import StorageError, ValidationError
from ..models import LoginHistory, User

logger = logging.getLogger("sentinel.store")


@contextmanager
def _storage_guard(operation: str, username: Optional[str] = None) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Credential store failure during %s (username=%s)", operation, username)
        raise StorageError(operation) from exc


class CredentialStore:

    def find_by_username(self, username: str) -> Optional[User]:
        with _storage_guard("find_by_username", username):
            with db_session() as session:
                return session.execute(
                    select(User).where(User.username == username)
                ).scalar_one_or_none()

    def exists_by_username(self, username: str) -> bool:
        with _storage_guard("exists_by_username", username):
            with db_session() as session:
                count = session.execute(
                    select(func.count(User.id)).where(User.username == username)
                ).scalar_one()
        return count > 0

    def save(self, user: User) -> User:
        """
        Insert a new user. The unique index on username settles races
        between concurrent registrations: the loser gets the same
        "already exists" outcome as the up-front existence check.
        """
        try:
            with db_session() as session:
                session.add(user)
                session.flush()
                session.refresh(user)
        except IntegrityError as exc:
            logger.info("Registration lost uniqueness race for username=%s", user.username)
            raise ValidationError("Username already exists") from exc
        except SQLAlchemyError as exc:
            logger.exception("Credential store failure during save (username=%s)", user.username)
            raise StorageError("save") from exc
        return user

    def update_failed_login_attempts(self, username: str, count: int) -> None:
        with _storage_guard("update_failed_login_attempts", username):
            with db_session() as session:
                session.execute(
                    update(User)
                    .where(User.username == username)
                    .values(failed_login_attempts=count)
                )

    def increment_failed_login_attempts(self, username: str) -> int:
        """Atomically add one failure and return the new count."""
        with _storage_guard("increment_failed_login_attempts", username):
            with db_session() as session:
                session.execute(
                    update(User)
                    .where(User.username == username)
                    .values(failed_login_attempts=User.failed_login_attempts + 1)
                )
                count = session.execute(
                    select(User.failed_login_attempts).where(User.username == username)
                ).scalar_one_or_none()
        return count or 0

    def update_last_login_time(self, username: str, when: datetime) -> None:
        """Record a successful login; zeroes the failure counter in the same statement."""
        with _storage_guard("update_last_login_time", username):
            with db_session() as session:
                session.execute(
                    update(User)
                    .where(User.username == username)
                    .values(
                        last_login_at=when,
                        failed_login_attempts=0,
                        login_count=User.login_count + 1,
                    )
                )

    def lock_account(self, username: str) -> None:
        with _storage_guard("lock_account", username):
            with db_session() as session:
                session.execute(
                    update(User)
                    .where(User.username == username)
                    .values(account_non_locked=False)
                )

    def unlock_account(self, username: str) -> bool:
        with _storage_guard("unlock_account", username):
            with db_session() as session:
                result = session.execute(
                    update(User)
                    .where(User.username == username)
                    .values(account_non_locked=True, failed_login_attempts=0)
                )
        return result.rowcount > 0

    def list_users(self) -> List[User]:
        with _storage_guard("list_users"):
            with db_session() as session:
                return list(session.execute(select(User).order_by(User.created_at)).scalars().all())

    def recent_login_history(self, limit: int = 100) -> List[LoginHistory]:
        """Newest login attempts first, across all users."""
        with _storage_guard("recent_login_history"):
            with db_session() as session:
                return list(
                    session.execute(
                        select(LoginHistory)
                        .order_by(LoginHistory.created_at.desc(), LoginHistory.id.desc())
                        .limit(limit)
                    )
                    .scalars()
                    .all()
                )

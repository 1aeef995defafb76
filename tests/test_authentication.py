"""
tests/test_authentication.py — Login pipeline and credential store
===================================================================

Covers: generic failures, failure counting, lockout, success bookkeeping,
session conflict strategies, audit trail, and the store's per-user
update operations.
"""
from __future__ import annotations

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from sentinel.auth.core import PasswordHasher
from sentinel.auth.service import AuthenticationService
from sentinel.auth.sessions import REJECT_NEW, SessionRegistry
from sentinel.auth.store import CredentialStore
from sentinel.database import db_session
from sentinel.errors import AuthenticationError, StorageError
from sentinel.models import LoginHistory


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore()


@pytest.fixture
def service(store) -> AuthenticationService:
    return AuthenticationService(
        store=store,
        hasher=PasswordHasher(rounds=4),
        sessions=SessionRegistry(),
        max_failed_attempts=5,
    )


def _audit_reasons(username: str) -> list:
    with db_session() as session:
        rows = session.execute(
            select(LoginHistory)
            .where(LoginHistory.username == username)
            .order_by(LoginHistory.id)
        ).scalars().all()
        return [(r.outcome, r.reason) for r in rows]


# ═══════════════════════════════════════════════════════════════════════════
# Pipeline
# ═══════════════════════════════════════════════════════════════════════════

class TestLoginPipeline:
    def test_wrong_password_then_success_resets_counter(self, service, store):
        service.register("alice", "password123")

        for expected in (1, 2, 3):
            with pytest.raises(AuthenticationError) as exc_info:
                service.authenticate("alice", "wrongpass")
            assert exc_info.value.reason == "bad_password"
            assert store.find_by_username("alice").failed_login_attempts == expected

        record = service.authenticate("alice", "password123")
        user = store.find_by_username("alice")
        assert record.username == "alice"
        assert user.failed_login_attempts == 0
        assert user.last_login_at is not None
        assert user.login_count == 1
        assert user.account_non_locked is True

    def test_unknown_user_fails_like_bad_password(self, service):
        with pytest.raises(AuthenticationError) as exc_info:
            service.authenticate("ghost", "password123")
        assert exc_info.value.reason == "unknown_user"
        assert _audit_reasons("ghost") == [("failure", "unknown_user")]

    def test_account_locks_at_threshold(self, service, store):
        service.register("bob", "password123")
        for _ in range(4):
            with pytest.raises(AuthenticationError):
                service.authenticate("bob", "nope-nope")
        assert store.find_by_username("bob").account_non_locked is True

        with pytest.raises(AuthenticationError):
            service.authenticate("bob", "nope-nope")
        assert store.find_by_username("bob").account_non_locked is False

    def test_locked_account_rejects_correct_password(self, service, store):
        service.register("carol", "password123")
        store.lock_account("carol")
        with pytest.raises(AuthenticationError) as exc_info:
            service.authenticate("carol", "password123")
        assert exc_info.value.reason == "locked"
        # Lock check happens before verification, so the counter is untouched
        assert store.find_by_username("carol").failed_login_attempts == 0

    def test_unlock_restores_login(self, service, store):
        service.register("dave", "password123")
        store.update_failed_login_attempts("dave", 5)
        store.lock_account("dave")
        assert store.unlock_account("dave") is True
        user = store.find_by_username("dave")
        assert user.account_non_locked is True
        assert user.failed_login_attempts == 0
        assert service.authenticate("dave", "password123").username == "dave"

    def test_audit_trail_records_internal_causes(self, service, store):
        service.register("erin", "password123")
        with pytest.raises(AuthenticationError):
            service.authenticate("erin", "wrongpass", ip_address="10.1.1.1", user_agent="pytest")
        service.authenticate("erin", "password123", ip_address="10.1.1.1")
        store.lock_account("erin")
        with pytest.raises(AuthenticationError):
            service.authenticate("erin", "password123")

        assert _audit_reasons("erin") == [
            ("failure", "bad_password"),
            ("success", None),
            ("failure", "locked"),
        ]

    def test_reject_new_session_strategy(self, store):
        service = AuthenticationService(
            store=store,
            hasher=PasswordHasher(rounds=4),
            sessions=SessionRegistry(conflict_strategy=REJECT_NEW),
        )
        service.register("frank", "password123")
        first = service.authenticate("frank", "password123")
        with pytest.raises(AuthenticationError) as exc_info:
            service.authenticate("frank", "password123")
        assert exc_info.value.reason == "session_limit"

        service.logout(first.session_id)
        assert service.authenticate("frank", "password123").username == "frank"

    def test_evict_oldest_session_strategy(self, service):
        service.register("grace", "password123")
        first = service.authenticate("grace", "password123")
        second = service.authenticate("grace", "password123")
        assert service.sessions.resolve(first.session_id) is None
        assert service.sessions.resolve(second.session_id) == second

    def test_locked_account_still_pays_one_verification(self, service, store):
        service.register("heidi", "password123")
        store.lock_account("heidi")
        calls = []
        real_verify = service.hasher.verify

        def counting_verify(password, stored):
            calls.append(password)
            return real_verify(password, stored)

        service.hasher.verify = counting_verify
        with pytest.raises(AuthenticationError):
            service.authenticate("heidi", "password123")
        with pytest.raises(AuthenticationError):
            service.authenticate("nobody-here", "password123")
        assert calls == ["password123", "password123"]

    def test_storage_failure_after_issue_leaves_no_session(self, store, monkeypatch):
        service = AuthenticationService(
            store=store,
            hasher=PasswordHasher(rounds=4),
            sessions=SessionRegistry(conflict_strategy=REJECT_NEW),
        )
        service.register("ivan", "password123")

        def broken_update(username, when):
            raise StorageError("update_last_login_time")

        with monkeypatch.context() as patch:
            patch.setattr(store, "update_last_login_time", broken_update)
            with pytest.raises(StorageError):
                service.authenticate("ivan", "password123")
        assert service.sessions.active() == []

        # A retry is not blocked by a leftover session under reject_new
        assert service.authenticate("ivan", "password123").username == "ivan"


# ═══════════════════════════════════════════════════════════════════════════
# Credential store
# ═══════════════════════════════════════════════════════════════════════════

class TestCredentialStore:
    def test_lock_account_is_idempotent(self, service, store):
        service.register("alice", "password123")
        store.lock_account("alice")
        store.lock_account("alice")
        assert store.find_by_username("alice").account_non_locked is False

    def test_update_last_login_time_zeroes_counter(self, service, store):
        service.register("alice", "password123")
        store.update_failed_login_attempts("alice", 3)
        when = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        store.update_last_login_time("alice", when)
        user = store.find_by_username("alice")
        assert user.failed_login_attempts == 0
        assert user.last_login_at.replace(tzinfo=None) == when.replace(tzinfo=None)

    def test_increment_returns_new_count(self, service, store):
        service.register("alice", "password123")
        assert store.increment_failed_login_attempts("alice") == 1
        assert store.increment_failed_login_attempts("alice") == 2

    def test_updates_are_scoped_to_one_user(self, service, store):
        service.register("alice", "password123")
        service.register("bobby", "password123")
        store.lock_account("alice")
        store.update_failed_login_attempts("alice", 4)
        bob = store.find_by_username("bobby")
        assert bob.account_non_locked is True
        assert bob.failed_login_attempts == 0

    def test_username_lookup_is_case_sensitive(self, service, store):
        service.register("Alice", "password123")
        assert store.exists_by_username("Alice") is True
        assert store.exists_by_username("alice") is False

    def test_unlock_unknown_user(self, store):
        assert store.unlock_account("nobody") is False

    def test_lookup_treats_input_as_data(self, store):
        assert store.find_by_username("x' OR '1'='1") is None
        assert store.exists_by_username("admin") is True

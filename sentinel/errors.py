"""
errors.py — Failure taxonomy for the authentication gateway
============================================================
Validation failures carry a reason that is safe to show the client.
Authentication failures carry an internal reason that is logged and
audited but never surfaced. Storage failures are logged server-side and
answered with a generic 500.
"""
from __future__ import annotations


class SentinelError(Exception):
    """Base class for every gateway failure."""


class ValidationError(SentinelError):
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class AuthenticationError(SentinelError):
    # Internal causes: unknown_user | bad_password | locked | session_limit
    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class RateLimitExceeded(SentinelError):
    def __init__(self, client_id: str) -> None:
        super().__init__(f"rate limit exceeded for {client_id}")
        self.client_id = client_id


class StorageError(SentinelError):
    """Unexpected persistence failure."""

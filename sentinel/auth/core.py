from __future__ import annotations

import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
from jose import jwt

from ..config import settings

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

# bcrypt only ever consumes the first 72 bytes of a secret
_BCRYPT_MAX_BYTES = 72


class PasswordHasher:
    """Salted, adaptive one-way hashing (bcrypt) with a tunable work factor."""

    def __init__(self, rounds: int = 12) -> None:
        self.rounds = rounds

    @staticmethod
    def _encode(plain: str) -> bytes:
        return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]

    def hash(self, plain: str) -> str:
        return bcrypt.hashpw(self._encode(plain), bcrypt.gensalt(rounds=self.rounds)).decode()

    def verify(self, plain: str, hashed: Optional[str]) -> bool:
        """Return True only for a well-formed hash that matches. Malformed hashes fail closed."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(self._encode(plain), hashed.encode("utf-8"))
        except ValueError:
            return False


# ---------------------------------------------------------------------------
# Session cookie token
# ---------------------------------------------------------------------------

ALGORITHM = "HS256"


def create_session_token(
    session_id: str,
    subject: str,
    expires_minutes: int | None = None,
) -> str:
    minutes = expires_minutes or settings.session_expire_minutes
    now = datetime.now(timezone.utc)
    payload = {
        "sid": session_id,
        "sub": subject,          # username
        "exp": now + timedelta(minutes=minutes),
        "iat": now,
    }
    return jwt.encode(payload, settings.session_secret, algorithm=ALGORITHM)


def decode_session_token(token: str) -> dict:
    """Decode and validate a session token. Raises JWTError on failure."""
    return jwt.decode(token, settings.session_secret, algorithms=[ALGORITHM])


# ---------------------------------------------------------------------------
# Random identifiers
# ---------------------------------------------------------------------------

def generate_session_id() -> str:
    return secrets.token_urlsafe(32)


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)

"""
validation.py — Registration input sanitation and business rules
=================================================================
Sanitation here is defence in depth only. The credential store never
builds SQL from strings; every query it issues is parameterised.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from ..errors import ValidationError
from .store import CredentialStore

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 8

_STRIP_CHARS = re.compile(r"[';\"\\]")
_STRIP_KEYWORDS = re.compile(r"(union|select|insert|update|delete|drop|create|alter)", re.IGNORECASE)


@dataclass(frozen=True)
class ValidatedInput:
    username: str
    password: str


def sanitize_username(raw: Optional[str]) -> str:
    if raw is None:
        return ""
    cleaned = _STRIP_CHARS.sub("", raw.strip())
    return _STRIP_KEYWORDS.sub("", cleaned)


class RegistrationValidator:
    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def validate(self, username: Optional[str], password: Optional[str]) -> ValidatedInput:
        """
        Run every registration check in order and return the sanitized
        input, or raise ValidationError with a client-safe reason.
        """
        clean = sanitize_username(username)
        password = password or ""

        if len(clean) < USERNAME_MIN_LENGTH or len(clean) > USERNAME_MAX_LENGTH:
            raise ValidationError(
                f"Username must be between {USERNAME_MIN_LENGTH} and {USERNAME_MAX_LENGTH} characters"
            )
        if len(password) < PASSWORD_MIN_LENGTH:
            raise ValidationError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long")
        if self.store.exists_by_username(clean):
            raise ValidationError("Username already exists")

        return ValidatedInput(username=clean, password=password)

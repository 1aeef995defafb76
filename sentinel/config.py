from __future__ import annotations

import sys
from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings


_DEFAULT_SESSION_SECRET = "change-me-in-production-use-long-random-string"


class Settings(BaseSettings):
    # Database
    database_url: str = "sqlite:///./sentinel.db"
    log_sql: bool = False

    # Server
    environment: str = "development"
    log_level: str = "info"
    log_format: str = "json"
    allow_cors_origins: List[str] = []

    # Sessions
    session_secret: str = _DEFAULT_SESSION_SECRET
    session_expire_minutes: int = 30
    session_cookie_name: str = "SESSION"
    session_conflict_strategy: str = "evict_oldest"  # or "reject_new"

    # Password hashing (bcrypt cost factor)
    bcrypt_rounds: int = 12

    # Login rate limiting
    login_rate_limit_max_requests: int = 10
    login_rate_limit_window_seconds: int = 60
    rate_limit_sweep_interval_seconds: int = 60
    trust_proxy_headers: bool = False

    # Account lockout
    max_failed_login_attempts: int = 5

    # Transport security
    enforce_https: bool = True
    local_hosts: List[str] = ["localhost", "127.0.0.1", "::1"]
    hsts_max_age_seconds: int = 31536000

    # CSRF (double-submit cookie)
    csrf_cookie_name: str = "XSRF-TOKEN"
    csrf_header_name: str = "X-XSRF-TOKEN"
    csrf_form_field: str = "_csrf"

    # Bootstrap admin
    admin_username: str = "admin"
    admin_password: str = "changeme"

    @field_validator("session_secret")
    @classmethod
    def validate_session_secret(cls, v: str, info) -> str:
        """Refuse to start in production with the default session secret."""
        env = info.data.get("environment", "development")
        if env != "development" and v == _DEFAULT_SESSION_SECRET:
            print(
                "\n🚨 FATAL: SENTINEL_SESSION_SECRET is set to the default value.\n"
                "   Set SENTINEL_SESSION_SECRET to a strong random string before "
                "running in production.\n"
                "   Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(48))\"\n",
                file=sys.stderr,
            )
            raise ValueError(
                "Session secret must be changed from default in non-development environments. "
                "Set SENTINEL_SESSION_SECRET env var."
            )
        return v

    @field_validator("session_conflict_strategy")
    @classmethod
    def validate_conflict_strategy(cls, v: str) -> str:
        if v not in ("evict_oldest", "reject_new"):
            raise ValueError("session_conflict_strategy must be 'evict_oldest' or 'reject_new'")
        return v

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        if not 4 <= v <= 31:
            raise ValueError("bcrypt_rounds must be between 4 and 31")
        return v

    class Config:
        env_prefix = "SENTINEL_"


@lru_cache
def get_settings() -> Settings:
    return Settings()


# Module-level singleton for convenience
settings = get_settings()

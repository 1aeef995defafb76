from __future__ import annotations

import logging

from .core import PasswordHasher
from .store import CredentialStore
from ..config import settings
from ..models import User

logger = logging.getLogger("sentinel.seed")

_DEFAULT_PASSWORD = "changeme"


def seed_admin(store: CredentialStore, hasher: PasswordHasher) -> None:
    """
    Create a bootstrap admin account on first startup if no users exist.
    Credentials come from SENTINEL_ADMIN_USERNAME / SENTINEL_ADMIN_PASSWORD.

    Defaults (for local dev only — change before production):
      SENTINEL_ADMIN_USERNAME = admin
      SENTINEL_ADMIN_PASSWORD = changeme
    """
    if store.list_users():
        return  # Users already seeded — don't overwrite

    if settings.admin_password == _DEFAULT_PASSWORD:
        logger.warning(
            "Seeding admin with DEFAULT password 'changeme'. "
            "Set SENTINEL_ADMIN_PASSWORD before deploying to production."
        )
        if settings.environment != "development":
            logger.error(
                "Refusing to seed default password in non-development environment (%s).",
                settings.environment,
            )
            return

    store.save(
        User(
            username=settings.admin_username,
            password_hash=hasher.hash(settings.admin_password),
            role="admin",
            failed_login_attempts=0,
            account_non_locked=True,
        )
    )
    logger.info("Default admin created: %s", settings.admin_username)

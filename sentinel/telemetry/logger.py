from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError

from ..database import db_session
from ..models import LoginHistory

logger = logging.getLogger("sentinel.audit")


def log_login_attempt(
    username: str,
    outcome: str,
    reason: Optional[str] = None,
    user_id: Optional[int] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> None:
    """
    Persist one login attempt to the audit trail.

    This is where the real cause behind a generic client-facing failure
    (unknown user, bad password, locked account) is kept. A failed audit
    write is logged and does not change the login outcome.
    """
    logger.info(
        "login %s for %s from %s%s",
        outcome, username, ip_address, f" ({reason})" if reason else "",
    )
    try:
        with db_session() as session:
            session.add(
                LoginHistory(
                    user_id=user_id,
                    username=username[:255],
                    ip_address=ip_address,
                    user_agent=(user_agent or "")[:512],
                    outcome=outcome,
                    reason=reason,
                )
            )
    except SQLAlchemyError:
        logger.exception("Failed to write login audit row for %s", username)

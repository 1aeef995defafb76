"""
sessions.py — Server-side session registry
==========================================
Authoritative record of live sessions, indexed by session id and by
username so that the one-active-session-per-user policy can be applied
at issue time. Cookies only carry a signed pointer into this registry;
evicting or revoking a record here ends the session immediately.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

from ..errors import AuthenticationError
from .core import generate_session_id

logger = logging.getLogger("sentinel.sessions")

EVICT_OLDEST = "evict_oldest"
REJECT_NEW = "reject_new"


@dataclass(frozen=True)
class SessionRecord:
    session_id: str
    username: str
    role: str
    created_at: float
    expires_at: float


class SessionRegistry:
    def __init__(
        self,
        ttl_seconds: float = 30 * 60,
        conflict_strategy: str = EVICT_OLDEST,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if conflict_strategy not in (EVICT_OLDEST, REJECT_NEW):
            raise ValueError(f"Unknown session conflict strategy: {conflict_strategy}")
        self.ttl_seconds = ttl_seconds
        self.conflict_strategy = conflict_strategy
        self._clock = clock
        self._lock = threading.Lock()
        self._by_id: Dict[str, SessionRecord] = {}
        self._by_user: Dict[str, str] = {}

    def _drop(self, session_id: str) -> Optional[SessionRecord]:
        record = self._by_id.pop(session_id, None)
        if record is not None and self._by_user.get(record.username) == session_id:
            del self._by_user[record.username]
        return record

    def issue(self, username: str, role: str) -> SessionRecord:
        now = self._clock()
        with self._lock:
            existing_id = self._by_user.get(username)
            if existing_id is not None:
                existing = self._by_id.get(existing_id)
                if existing is not None and existing.expires_at <= now:
                    self._drop(existing_id)
                elif self.conflict_strategy == REJECT_NEW:
                    raise AuthenticationError("session_limit")
                else:
                    self._drop(existing_id)
                    logger.info("Evicted prior session for user %s", username)

            record = SessionRecord(
                session_id=generate_session_id(),
                username=username,
                role=role,
                created_at=now,
                expires_at=now + self.ttl_seconds,
            )
            self._by_id[record.session_id] = record
            self._by_user[username] = record.session_id
        return record

    def resolve(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._by_id.get(session_id)
            if record is None:
                return None
            if record.expires_at <= self._clock():
                self._drop(session_id)
                return None
            return record

    def revoke(self, session_id: str) -> bool:
        with self._lock:
            return self._drop(session_id) is not None

    def revoke_user(self, username: str) -> bool:
        with self._lock:
            session_id = self._by_user.get(username)
            if session_id is None:
                return False
            return self._drop(session_id) is not None

    def active(self) -> List[SessionRecord]:
        now = self._clock()
        with self._lock:
            return [r for r in self._by_id.values() if r.expires_at > now]

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()
            self._by_user.clear()

"""
rate_limit.py — Per-client fixed-window admission control for logins
=====================================================================
Each client identifier owns a RequestWindow guarded by its own lock, so
the reset-check-increment sequence is one atomic step per client while
different clients never wait on each other. The shared map lock is only
held to look up or insert an entry.

The limiter is created by the application at start-up, optionally runs a
background sweeper that evicts windows older than the window size, and
is closed at shutdown.
"""
from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi.util import get_remote_address

from .errors import RateLimitExceeded

logger = logging.getLogger("sentinel.rate_limit")

MAX_REQUESTS = 10
WINDOW_SIZE_SECONDS = 60

THROTTLED_MESSAGE = "Too many login attempts. Please try again later."


@dataclass
class RequestWindow:
    request_count: int
    window_start: float
    evicted: bool = False
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)


class FixedWindowRateLimiter:
    def __init__(
        self,
        max_requests: int = MAX_REQUESTS,
        window_seconds: float = WINDOW_SIZE_SECONDS,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float = WINDOW_SIZE_SECONDS,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._windows: Dict[str, RequestWindow] = {}
        self._map_lock = threading.Lock()
        self._stop = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._map_lock:
            return len(self._windows)

    def _window_for(self, client_id: str, now: float) -> RequestWindow:
        with self._map_lock:
            window = self._windows.get(client_id)
            if window is None:
                window = RequestWindow(request_count=0, window_start=now)
                self._windows[client_id] = window
            return window

    def try_acquire(self, client_id: str) -> bool:
        """Admit or reject one request for client_id as a single atomic step."""
        now = self._clock()
        while True:
            window = self._window_for(client_id, now)
            with window.lock:
                if window.evicted:
                    # Swept between lookup and lock; pick up the fresh entry
                    continue
                if now - window.window_start >= self.window_seconds:
                    window.request_count = 0
                    window.window_start = now
                if window.request_count < self.max_requests:
                    window.request_count += 1
                    return True
                return False

    def check(self, client_id: str) -> None:
        """Raise RateLimitExceeded when client_id is over quota."""
        if not self.try_acquire(client_id):
            raise RateLimitExceeded(client_id)

    def sweep(self) -> int:
        """Evict windows that have outlived the window size. Returns the eviction count."""
        now = self._clock()
        evicted = 0
        with self._map_lock:
            for client_id, window in list(self._windows.items()):
                with window.lock:
                    if now - window.window_start >= self.window_seconds:
                        window.evicted = True
                        del self._windows[client_id]
                        evicted += 1
        if evicted:
            logger.debug("Evicted %d idle rate-limit windows", evicted)
        return evicted

    def reset(self) -> None:
        with self._map_lock:
            for window in self._windows.values():
                window.evicted = True
            self._windows.clear()

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        if self._sweeper is not None:
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._sweep_loop, name="rate-limit-sweeper", daemon=True
        )
        self._sweeper.start()
        logger.info(
            "Login rate limiter started (%d requests / %ss)",
            self.max_requests, self.window_seconds,
        )

    def _sweep_loop(self) -> None:
        while not self._stop.wait(self.sweep_interval_seconds):
            self.sweep()

    def close(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=5)
            self._sweeper = None
        self.reset()


# ---------------------------------------------------------------------------
# Client identification
# ---------------------------------------------------------------------------

def client_identifier(request: Request, trust_proxy_headers: bool = False) -> str:
    """
    Derive the throttling key for a request.

    Forwarding headers are only consulted when the deployment sits behind
    a trusted proxy that strips client-supplied copies at the edge;
    otherwise any caller could pick its own key.
    """
    if trust_proxy_headers:
        forwarded_for = request.headers.get("x-forwarded-for", "")
        if forwarded_for:
            first = forwarded_for.split(",")[0].strip()
            if first:
                return first
        real_ip = request.headers.get("x-real-ip", "").strip()
        if real_ip:
            return real_ip
    return get_remote_address(request)


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit exceeded for client: %s", exc.client_id)
    return JSONResponse(status_code=429, content={"error": THROTTLED_MESSAGE})

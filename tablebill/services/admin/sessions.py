"""Server-side super-admin sessions with explicit expiry."""
# ruff: noqa: UP017

from __future__ import annotations

import hmac
import logging
import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from threading import Lock

from tablebill.config import settings

logger = logging.getLogger(__name__)


@dataclass
class AdminSession:
    token: str
    issued_at: datetime
    expires_at: datetime


class AdminSessionError(Exception):
    """Raised when a session token is missing, unknown or expired."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RateLimiter:
    """In-memory rate limiter keyed by (identity, action)."""

    def __init__(self, max_requests: int, window_seconds: int) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._requests: dict[tuple[str, str], list[float]] = {}

    def check(self, key: tuple[str, str]) -> float | None:
        """Record a hit; return retry_after seconds if rate-limited."""
        now = time.monotonic()
        window_start = now - self.window_seconds
        bucket = self._requests.setdefault(key, [])
        while bucket and bucket[0] < window_start:
            bucket.pop(0)
        if len(bucket) >= self.max_requests:
            retry_after = bucket[0] + self.window_seconds - now
            return max(retry_after, 0.0)
        bucket.append(now)
        return None

    def reset(self) -> None:
        self._requests.clear()


class AdminSessionRegistry:
    """Issue and validate opaque bearer tokens for the super-admin dashboard."""

    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds
        self._sessions: dict[str, AdminSession] = {}
        self._lock = Lock()

    def verify_password(self, candidate: str) -> bool:
        expected = settings.super_admin_password
        if not expected:
            return False
        return hmac.compare_digest(candidate.encode("utf-8"), expected.encode("utf-8"))

    def issue(self) -> AdminSession:
        issued_at = _now()
        session = AdminSession(
            token=secrets.token_urlsafe(32),
            issued_at=issued_at,
            expires_at=issued_at + timedelta(seconds=self.ttl_seconds),
        )
        with self._lock:
            self._prune_expired(issued_at)
            self._sessions[session.token] = session
        logger.info("admin.session.issued", extra={"expires_at": session.expires_at.isoformat()})
        return session

    def resolve(self, token: str) -> AdminSession:
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                raise AdminSessionError("Invalid session")
            if _now() > session.expires_at:
                self._sessions.pop(token, None)
                logger.info("admin.session.expired")
                raise AdminSessionError("Session expired")
        return session

    def revoke(self, token: str) -> bool:
        with self._lock:
            removed = self._sessions.pop(token, None)
        if removed:
            logger.info("admin.session.revoked")
        return removed is not None

    def _prune_expired(self, now: datetime) -> None:
        expired = [token for token, s in self._sessions.items() if now > s.expires_at]
        for token in expired:
            del self._sessions[token]
        if expired:
            logger.info("admin.session.pruned", extra={"count": len(expired)})

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


registry = AdminSessionRegistry(ttl_seconds=settings.admin_session_ttl_seconds)
login_rate_limiter = RateLimiter(
    max_requests=settings.auth_rate_limit_max_requests,
    window_seconds=settings.auth_rate_limit_window_seconds,
)

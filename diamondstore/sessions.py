"""In-memory login sessions for storefront users."""

from __future__ import annotations

import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

SESSION_COOKIE_NAME = "diamondstore_session"


@dataclass
class _SessionRecord:
    user_id: int
    expires_at: datetime


class SessionManager:
    """Issue, resolve, and revoke opaque session tokens.

    Expiry is sliding: every successful :meth:`resolve` pushes the deadline
    out by one TTL.
    """

    def __init__(self, *, ttl: timedelta = timedelta(hours=8)) -> None:
        if ttl <= timedelta(0):
            raise ValueError("Session TTL must be positive")
        self._ttl = ttl
        self._sessions: Dict[str, _SessionRecord] = {}
        self._lock = threading.Lock()

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    @property
    def cookie_max_age(self) -> int:
        return int(self._ttl.total_seconds())

    def create(self, user_id: int) -> str:
        token = secrets.token_urlsafe(32)
        with self._lock:
            self._purge_expired(self._now())
            self._sessions[token] = _SessionRecord(user_id=user_id, expires_at=self._now() + self._ttl)
        return token

    def resolve(self, token: Optional[str]) -> Optional[int]:
        if not token:
            return None
        now = self._now()
        with self._lock:
            record = self._sessions.get(token)
            if record is None:
                return None
            if record.expires_at <= now:
                del self._sessions[token]
                return None
            record.expires_at = now + self._ttl
            return record.user_id

    def destroy(self, token: Optional[str]) -> None:
        if not token:
            return
        with self._lock:
            self._sessions.pop(token, None)

    def destroy_user(self, user_id: int) -> int:
        """Revoke every session belonging to ``user_id``."""

        with self._lock:
            tokens = [token for token, record in self._sessions.items() if record.user_id == user_id]
            for token in tokens:
                del self._sessions[token]
        return len(tokens)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def _purge_expired(self, now: datetime) -> None:
        expired = [token for token, record in self._sessions.items() if record.expires_at <= now]
        for token in expired:
            del self._sessions[token]

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)


__all__ = ["SESSION_COOKIE_NAME", "SessionManager"]

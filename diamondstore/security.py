"""Session-cookie authentication dependencies for the storefront API."""
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException, Request, WebSocket, status

from .database import Database
from .models import User
from .sessions import SESSION_COOKIE_NAME, SessionManager


class SessionAuth:
    """Resolve the storefront user behind a session cookie."""

    def __init__(self, database: Database, sessions: SessionManager) -> None:
        self._database = database
        self._sessions = sessions

    def _lookup(self, token: Optional[str]) -> Optional[User]:
        user_id = self._sessions.resolve(token)
        if user_id is None:
            return None
        user = self._database.get_user(user_id)
        if user is None:
            # The account was removed while the session was still live.
            self._sessions.destroy(token)
        return user

    def current_user(self, request: Request) -> User:
        user = self._lookup(request.cookies.get(SESSION_COOKIE_NAME))
        if user is None:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
        return user

    def admin_user(self, request: Request) -> User:
        user = self.current_user(request)
        if not user.is_admin:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Forbidden: Admin access required",
            )
        return user

    def websocket_user(self, websocket: WebSocket) -> Optional[User]:
        return self._lookup(websocket.cookies.get(SESSION_COOKIE_NAME))


__all__ = ["SessionAuth"]

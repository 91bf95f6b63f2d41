"""Per-user WebSocket fan-out for balance and order updates."""
from __future__ import annotations

import logging
import threading
from contextlib import suppress
from typing import Any, Dict, List, Set

from fastapi import WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

logger = logging.getLogger("diamondstore.notifications")


async def send_websocket_json(websocket: WebSocket, payload: dict[str, Any]) -> bool:
    """Send ``payload`` to a websocket client, returning ``False`` if it is gone."""

    if websocket.client_state == WebSocketState.DISCONNECTED:
        return False
    if websocket.application_state == WebSocketState.DISCONNECTED:
        return False
    try:
        await websocket.send_json(payload)
    except (RuntimeError, OSError, WebSocketDisconnect) as exc:
        logger.debug("Dropping websocket after failed send: %s", exc)
        return False
    return True


class NotificationHub:
    """Registry of the sockets each user has open.

    One hub belongs to one application instance. It is created by the app
    factory and emptied by :meth:`close` when the application shuts down.
    """

    def __init__(self) -> None:
        self._clients: Dict[int, Set[WebSocket]] = {}
        self._lock = threading.Lock()

    def register(self, user_id: int, websocket: WebSocket) -> None:
        with self._lock:
            self._clients.setdefault(user_id, set()).add(websocket)

    def unregister(self, user_id: int, websocket: WebSocket) -> None:
        with self._lock:
            sockets = self._clients.get(user_id)
            if sockets is None:
                return
            sockets.discard(websocket)
            if not sockets:
                self._clients.pop(user_id, None)

    def connection_count(self, user_id: int | None = None) -> int:
        with self._lock:
            if user_id is not None:
                return len(self._clients.get(user_id, ()))
            return sum(len(sockets) for sockets in self._clients.values())

    def _snapshot(self, user_id: int) -> List[WebSocket]:
        with self._lock:
            return list(self._clients.get(user_id, ()))

    async def publish(self, user_id: int, message: Dict[str, Any]) -> int:
        """Deliver ``message`` to every socket of ``user_id``.

        Delivery is best effort. Sockets that fail are unregistered and the
        number of successful deliveries is returned.
        """

        delivered = 0
        for websocket in self._snapshot(user_id):
            if await send_websocket_json(websocket, message):
                delivered += 1
            else:
                self.unregister(user_id, websocket)
        if delivered:
            logger.debug("Delivered %s event to %d socket(s) of user %s", message.get("type"), delivered, user_id)
        return delivered

    async def close(self) -> None:
        """Close every registered socket and forget them."""

        with self._lock:
            sockets = [ws for group in self._clients.values() for ws in group]
            self._clients.clear()
        for websocket in sockets:
            with suppress(RuntimeError, OSError):
                if websocket.application_state != WebSocketState.DISCONNECTED:
                    await websocket.close(code=1001)
        if sockets:
            logger.info("Closed %d notification socket(s) on shutdown", len(sockets))


__all__ = ["NotificationHub", "send_websocket_json"]

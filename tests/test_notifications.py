from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

from starlette.websockets import WebSocketState

from diamondstore.notifications import NotificationHub


class RecordingSocket:
    def __init__(self, *, broken: bool = False) -> None:
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.sent: List[Dict[str, Any]] = []
        self.close_code: Optional[int] = None
        self._broken = broken

    async def send_json(self, payload: Dict[str, Any]) -> None:
        if self._broken:
            raise RuntimeError("Cannot call send once a close message has been sent")
        self.sent.append(payload)

    async def close(self, code: int = 1000) -> None:
        self.close_code = code
        self.application_state = WebSocketState.DISCONNECTED


def test_publish_drops_socket_that_fails() -> None:
    hub = NotificationHub()
    broken = RecordingSocket(broken=True)
    hub.register(7, broken)  # type: ignore[arg-type]

    delivered = asyncio.run(hub.publish(7, {"type": "balance_update", "userId": 7, "newBalance": 1}))

    assert delivered == 0
    assert hub.connection_count(7) == 0
    assert hub.connection_count() == 0


def test_publish_keeps_healthy_sockets() -> None:
    hub = NotificationHub()
    healthy = RecordingSocket()
    broken = RecordingSocket(broken=True)
    other_user = RecordingSocket()
    hub.register(7, healthy)  # type: ignore[arg-type]
    hub.register(7, broken)  # type: ignore[arg-type]
    hub.register(8, other_user)  # type: ignore[arg-type]

    message = {"type": "order_update", "orderId": 3, "status": "completed"}
    assert asyncio.run(hub.publish(7, message)) == 1

    assert healthy.sent == [message]
    assert other_user.sent == []
    assert hub.connection_count(7) == 1
    assert hub.connection_count() == 2


def test_publish_to_user_without_sockets() -> None:
    hub = NotificationHub()
    assert asyncio.run(hub.publish(99, {"type": "balance_update"})) == 0


def test_close_shuts_every_socket() -> None:
    hub = NotificationHub()
    first = RecordingSocket()
    second = RecordingSocket()
    hub.register(1, first)  # type: ignore[arg-type]
    hub.register(2, second)  # type: ignore[arg-type]

    asyncio.run(hub.close())

    assert first.close_code == 1001
    assert second.close_code == 1001
    assert hub.connection_count() == 0

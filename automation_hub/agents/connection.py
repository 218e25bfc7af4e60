"""
Agent connections - transport handles for remote workers and observers
"""
import itertools
from typing import Protocol, runtime_checkable

from fastapi import WebSocket
from fastapi.websockets import WebSocketState


DUPLICATE_AGENT_CLOSE_CODE = 4000
DUPLICATE_AGENT_CLOSE_REASON = "Duplicate Agent ID"

_ids = itertools.count(1)


def next_connection_id() -> str:
    return f"conn-{next(_ids)}"


@runtime_checkable
class Connection(Protocol):
    """Duplex text channel identified by ``connection_id``."""

    connection_id: str

    async def send_text(self, data: str) -> None:
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None:
        ...


class WebSocketConnection:
    """Connection backed by a FastAPI WebSocket."""

    def __init__(self, websocket: WebSocket, connection_id: str = None):
        self.websocket = websocket
        self.connection_id = connection_id or next_connection_id()

    async def send_text(self, data: str) -> None:
        await self.websocket.send_text(data)

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.websocket.application_state != WebSocketState.DISCONNECTED:
            await self.websocket.close(code=code, reason=reason)

    def __repr__(self):
        return f"<WebSocketConnection(id='{self.connection_id}')>"

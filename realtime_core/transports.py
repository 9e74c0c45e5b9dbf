"""Per-connection delivery primitives.

Routing never looks at the transport kind; it only decides how an event is
framed on the wire and how inbound frames are named.
"""
import json
import re
from enum import Enum
from typing import Any, Optional, Protocol, Tuple

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from logging_config import get_logger
from realtime_core.errors import TransportFailure
from realtime_core.events import ConversationEvent

logger = get_logger(__name__)


class TransportKind(str, Enum):
    EVENT = "event"
    RAW = "raw"


# Inbound operation names used by the hub
OPERATIONS = (
    "authenticate",
    "join_conversation",
    "leave_conversation",
    "send_message",
    "start_typing",
    "stop_typing",
    "ping",
)


def to_snake(name: str) -> str:
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


class Transport(Protocol):
    kind: TransportKind

    async def send(self, event: ConversationEvent) -> None:
        """Deliver ``event`` or raise ``TransportFailure``."""
        ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


class WebSocketTransport:
    kind: TransportKind

    def __init__(self, websocket: WebSocket):
        self.websocket = websocket

    def encode(self, event: ConversationEvent) -> dict:
        raise NotImplementedError

    def decode(self, frame: Any) -> Tuple[Optional[str], Any]:
        """Return ``(operation, data)``; operation is None for unknown frames."""
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        return (
            self.websocket.client_state == WebSocketState.CONNECTED
            and self.websocket.application_state == WebSocketState.CONNECTED
        )

    async def send(self, event: ConversationEvent) -> None:
        if not self.is_open:
            raise TransportFailure("Connection already closed")
        try:
            await self.websocket.send_text(json.dumps(self.encode(event)))
        except Exception as e:
            raise TransportFailure(str(e)) from e

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.websocket.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.websocket.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")


class EventTransport(WebSocketTransport):
    """Named-event channel: ``{"event": "newMessage", "data": {...}}``."""

    kind = TransportKind.EVENT

    def encode(self, event: ConversationEvent) -> dict:
        return {"event": event.kind.value, "data": event.body()}

    def decode(self, frame: Any) -> Tuple[Optional[str], Any]:
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            return None, None
        operation = to_snake(frame["event"])
        if operation not in OPERATIONS:
            return None, None
        return operation, frame.get("data")


class RawTransport(WebSocketTransport):
    """Plain socket channel: ``{"type": "new_message", "data": {...}}``."""

    kind = TransportKind.RAW

    def encode(self, event: ConversationEvent) -> dict:
        return {"type": to_snake(event.kind.value), "data": event.body()}

    def decode(self, frame: Any) -> Tuple[Optional[str], Any]:
        if not isinstance(frame, dict) or not isinstance(frame.get("type"), str):
            return None, None
        operation = frame["type"]
        if operation not in OPERATIONS:
            return None, None
        return operation, frame.get("data")


TRANSPORTS = {
    TransportKind.EVENT: EventTransport,
    TransportKind.RAW: RawTransport,
}

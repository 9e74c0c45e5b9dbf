from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class EventKind(str, Enum):
    AUTHENTICATED = "authenticated"
    JOINED_CONVERSATION = "joinedConversation"
    NEW_MESSAGE = "newMessage"
    MESSAGE_STATUS = "messageStatus"
    USER_TYPING = "userTyping"
    USER_STOPPED_TYPING = "userStoppedTyping"
    PONG = "pong"
    ERROR = "error"


class ConversationEvent(BaseModel):
    """Immutable value delivered to one or more connections.

    ``conversation_id`` is absent for connection-level events such as
    ``authenticated`` or ``pong``.
    """

    model_config = ConfigDict(frozen=True)

    kind: EventKind
    conversation_id: Optional[int] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str = Field(default_factory=utc_now_iso)

    def body(self) -> Dict[str, Any]:
        """Payload as sent on the wire, stamped with the event timestamp."""
        data = dict(self.payload)
        data.setdefault("timestamp", self.timestamp)
        return data


def error_event(message: str, conversation_id: Optional[int] = None, **extra: Any) -> ConversationEvent:
    return ConversationEvent(
        kind=EventKind.ERROR,
        conversation_id=conversation_id,
        payload={"message": message, **extra},
    )

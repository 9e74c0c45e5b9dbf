"""Inbound operation handling for live connections.

``ChatHub`` owns one registry, room index and broadcast router, and exposes
the operations a connection may invoke. WebSocket endpoints and REST routes
both go through it, whatever the transport kind.
"""
import uuid
from typing import Any, Dict, Optional

from logging_config import get_logger
from realtime_core.auth import AuthGate
from realtime_core.broadcast import BroadcastRouter
from realtime_core.errors import (
    AccessDenied,
    ChatError,
    InvalidMessage,
    NotAuthenticated,
    NotFound,
    UnknownConnection,
)
from realtime_core.events import ConversationEvent, EventKind, error_event
from realtime_core.ports import MessageStore, PersistedMessage, UserDirectory, UserIdentity, TokenVerifier
from realtime_core.registry import Connection, ConnectionRegistry
from realtime_core.rooms import RoomIndex
from realtime_core.transports import Transport

logger = get_logger(__name__)

# Generic error messages for unexpected failures, per operation
FAILURE_MESSAGES = {
    "authenticate": "Authentication failed",
    "join_conversation": "Failed to join conversation",
    "send_message": "Failed to send message",
}


def parse_conversation_id(value: Any) -> int:
    if isinstance(value, dict):
        value = value.get("conversationId", value.get("conversation_id"))
    if isinstance(value, bool):
        raise NotFound("Invalid conversation id")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise NotFound("Invalid conversation id")


class ChatHub:
    def __init__(self, store: MessageStore, directory: UserDirectory, verifier: TokenVerifier):
        self.store = store
        self.gate = AuthGate(verifier, directory)
        self.registry = ConnectionRegistry(self.gate)
        self.rooms = RoomIndex(self.registry, store)
        self.router = BroadcastRouter(self.registry, self.rooms)

    # ---------- lifecycle ----------

    async def connect(self, transport: Transport, connection_id: Optional[str] = None) -> str:
        connection_id = connection_id or str(uuid.uuid4())
        await self.registry.admit(connection_id, transport)
        return connection_id

    async def disconnect(self, connection_id: str) -> None:
        await self.registry.evict(connection_id)

    # ---------- inbound operations ----------

    async def authenticate(self, connection_id: str, credential: Optional[str]) -> UserIdentity:
        user = await self.registry.authenticate(connection_id, credential)
        connection = self.registry.get(connection_id)
        await self.router.send_direct(
            connection_id,
            ConversationEvent(
                kind=EventKind.AUTHENTICATED,
                payload={
                    "user": user.model_dump(),
                    "connectionId": connection_id,
                    "connectedAt": connection.connected_at,
                    "transport": connection.transport_kind.value,
                },
            ),
        )
        return user

    async def join_conversation(self, connection_id: str, conversation_id: int) -> int:
        member_count = await self.rooms.join(connection_id, conversation_id)
        await self.router.send_direct(
            connection_id,
            ConversationEvent(
                kind=EventKind.JOINED_CONVERSATION,
                conversation_id=conversation_id,
                payload={
                    "conversationId": conversation_id,
                    "memberCount": member_count,
                    "message": "Successfully joined conversation",
                },
            ),
        )

        user_id = self.registry.resolve_user(connection_id)
        try:
            await self.store.mark_read(conversation_id, user_id)
        except Exception as e:
            logger.error(f"Error marking messages as read in conversation {conversation_id}: {e}", exc_info=True)
        return member_count

    async def leave_conversation(self, connection_id: str) -> Optional[int]:
        self._require_user(connection_id)
        return await self.rooms.leave(connection_id)

    async def send_message(self, connection_id: str, data: Dict[str, Any]) -> PersistedMessage:
        connection = self._require_user(connection_id)
        if not isinstance(data, dict):
            raise InvalidMessage("Invalid message payload")

        conversation_id = parse_conversation_id(data.get("conversationId", data.get("conversation_id")))
        content = data.get("content")
        message_type = data.get("messageType", data.get("type")) or "text"
        temporary_id = data.get("temporaryId", data.get("temporary_id"))
        if not isinstance(content, str) or not content.strip():
            raise InvalidMessage()

        await self._check_participant(conversation_id, connection.user_id)
        logger.info(f"User {connection.user_id} sending message to conversation {conversation_id}")
        message = await self.store.persist(conversation_id, connection.user_id, content.strip(), message_type)

        await self.publish_message(message, exclude_connection_id=connection_id, temporary_id=temporary_id)
        await self.router.send_direct(
            connection_id,
            ConversationEvent(
                kind=EventKind.MESSAGE_STATUS,
                conversation_id=conversation_id,
                payload={
                    "temporaryId": temporary_id,
                    "messageId": message.id,
                    "serverId": message.id,
                    "status": "sent",
                },
            ),
        )
        return message

    async def start_typing(self, connection_id: str, conversation_id: int) -> int:
        return await self._typing(connection_id, conversation_id, EventKind.USER_TYPING)

    async def stop_typing(self, connection_id: str, conversation_id: int) -> int:
        return await self._typing(connection_id, conversation_id, EventKind.USER_STOPPED_TYPING)

    async def ping(self, connection_id: str, data: Any = None) -> bool:
        connection = self.registry.get(connection_id)
        if connection is None:
            return False
        return await self.router.send_direct(
            connection_id,
            ConversationEvent(
                kind=EventKind.PONG,
                payload={
                    "message": "pong",
                    "originalData": data,
                    "transport": connection.transport_kind.value,
                },
            ),
        )

    async def publish_message(
        self,
        message: PersistedMessage,
        exclude_connection_id: Optional[str] = None,
        temporary_id: Optional[str] = None,
    ) -> int:
        """Broadcast an already persisted message to its conversation room."""
        payload = message.model_dump()
        if temporary_id is not None:
            payload["temporaryId"] = temporary_id
        event = ConversationEvent(
            kind=EventKind.NEW_MESSAGE,
            conversation_id=message.conversation_id,
            payload=payload,
        )
        delivered = await self.router.broadcast_to_room(message.conversation_id, event, exclude_connection_id)
        logger.info(f"Message {message.id} broadcasted to {delivered} connections in conversation {message.conversation_id}")
        return delivered

    async def dispatch(self, connection_id: str, operation: str, data: Any) -> Optional[ChatError]:
        """Run one inbound operation, answering failures with an ``error`` event.

        Returns the ``ChatError`` that denied the operation, or None.
        """
        try:
            if operation == "authenticate":
                credential = data.get("token") if isinstance(data, dict) else data
                await self.authenticate(connection_id, credential)
            elif operation == "join_conversation":
                await self.join_conversation(connection_id, parse_conversation_id(data))
            elif operation == "leave_conversation":
                await self.leave_conversation(connection_id)
            elif operation == "send_message":
                await self.send_message(connection_id, data)
            elif operation == "start_typing":
                await self.start_typing(connection_id, parse_conversation_id(data))
            elif operation == "stop_typing":
                await self.stop_typing(connection_id, parse_conversation_id(data))
            elif operation == "ping":
                await self.ping(connection_id, data)
            else:
                raise ChatError(f"Unknown operation: {operation}")
        except UnknownConnection as e:
            logger.debug(f"Dropped {operation} for unregistered connection {connection_id}")
            return e
        except ChatError as e:
            logger.warning(f"{operation} failed for connection {connection_id}: {e.message}")
            await self.router.send_direct(connection_id, error_event(e.message))
            return e
        except Exception as e:
            logger.error(f"Error handling {operation} for connection {connection_id}: {e}", exc_info=True)
            message = FAILURE_MESSAGES.get(operation, "Request failed")
            await self.router.send_direct(connection_id, error_event(message, error=str(e)))
        return None

    def stats(self) -> Dict[str, int]:
        return {
            "connections": len(self.registry),
            "authenticated_users": self.registry.authenticated_user_count(),
            "active_conversations": len(self.rooms),
        }

    # ---------- helpers ----------

    def _require_user(self, connection_id: str) -> Connection:
        connection = self.registry.get(connection_id)
        if connection is None:
            raise UnknownConnection()
        if not connection.is_authenticated:
            raise NotAuthenticated()
        return connection

    async def _check_participant(self, conversation_id: int, user_id: int) -> None:
        if not await self.store.conversation_exists(conversation_id):
            raise NotFound()
        if not await self.store.is_participant(conversation_id, user_id):
            raise AccessDenied()

    async def _typing(self, connection_id: str, conversation_id: int, kind: EventKind) -> int:
        connection = self._require_user(connection_id)
        if self.rooms.current_room(connection_id) != conversation_id:
            logger.debug(f"Ignoring {kind.value} from {connection_id}: not in conversation {conversation_id}")
            return 0

        payload = {
            "userId": connection.user_id,
            "userName": connection.user.name,
            "conversationId": conversation_id,
        }
        event = ConversationEvent(kind=kind, conversation_id=conversation_id, payload=payload)
        return await self.router.broadcast_to_room(conversation_id, event, exclude_connection_id=connection_id)

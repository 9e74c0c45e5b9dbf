from typing import Dict, FrozenSet, Optional, Set

from logging_config import get_logger
from realtime_core.errors import AccessDenied, NotAuthenticated, NotFound, UnknownConnection
from realtime_core.ports import MessageStore
from realtime_core.registry import ConnectionRegistry

logger = get_logger(__name__)


class RoomIndex:
    """Conversation id <-> live connection ids, at most one room per connection.

    Every membership change goes through ``join`` or ``leave``. The index
    shares the registry lock, and registers itself as an eviction hook so an
    evicted connection never lingers in a room.
    """

    def __init__(self, registry: ConnectionRegistry, store: MessageStore):
        self.registry = registry
        self.store = store
        self.lock = registry.lock
        self._rooms: Dict[int, Set[str]] = {}
        self._current: Dict[str, int] = {}
        registry.on_evict(self._discard)

    async def join(self, connection_id: str, conversation_id: int) -> int:
        """Move the connection into ``conversation_id`` and return the room size."""
        user_id = self.registry.resolve_user(connection_id)
        if user_id is None:
            if not self.registry.is_registered(connection_id):
                raise UnknownConnection()
            raise NotAuthenticated()

        # Participant check happens before the lock is taken
        if not await self.store.conversation_exists(conversation_id):
            raise NotFound()
        if not await self.store.is_participant(conversation_id, user_id):
            logger.warning(f"User {user_id} denied access to conversation {conversation_id}")
            raise AccessDenied()

        async with self.lock:
            # The connection may have been evicted while the check was in flight
            if not self.registry.is_registered(connection_id):
                logger.info(f"Connection {connection_id} closed before joining conversation {conversation_id}")
                raise UnknownConnection()
            previous = self._discard(connection_id)
            self._rooms.setdefault(conversation_id, set()).add(connection_id)
            self._current[connection_id] = conversation_id
            member_count = len(self._rooms[conversation_id])

        if previous is not None and previous != conversation_id:
            logger.info(f"User {user_id} left conversation {previous}")
        logger.info(f"User {user_id} joined conversation {conversation_id} ({member_count} connections)")
        return member_count

    async def leave(self, connection_id: str) -> Optional[int]:
        """Remove the connection from its room; returns the room it left, if any."""
        async with self.lock:
            previous = self._discard(connection_id)
        if previous is not None:
            logger.info(f"Connection {connection_id} left conversation {previous}")
        return previous

    async def leave_all(self, connection_id: str) -> Optional[int]:
        return await self.leave(connection_id)

    def _discard(self, connection_id: str) -> Optional[int]:
        # Caller holds the lock
        conversation_id = self._current.pop(connection_id, None)
        if conversation_id is None:
            return None
        members = self._rooms.get(conversation_id)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[conversation_id]
        return conversation_id

    def current_room(self, connection_id: str) -> Optional[int]:
        return self._current.get(connection_id)

    def members_of(self, conversation_id: int) -> FrozenSet[str]:
        """Snapshot of the room; empty for unknown conversations."""
        return frozenset(self._rooms.get(conversation_id, ()))

    def __len__(self) -> int:
        return len(self._rooms)

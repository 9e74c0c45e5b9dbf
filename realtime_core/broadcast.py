import asyncio
from typing import List, Optional

from logging_config import get_logger
from realtime_core.errors import TransportFailure
from realtime_core.events import ConversationEvent
from realtime_core.registry import ConnectionRegistry
from realtime_core.rooms import RoomIndex

logger = get_logger(__name__)


class BroadcastRouter:
    """Fans events out to a room snapshot, independent of transport kind."""

    def __init__(self, registry: ConnectionRegistry, rooms: RoomIndex):
        self.registry = registry
        self.rooms = rooms

    async def broadcast_to_room(
        self,
        conversation_id: int,
        event: ConversationEvent,
        exclude_connection_id: Optional[str] = None,
    ) -> int:
        """Deliver ``event`` to every room member except the excluded one.

        Stale connections are skipped and evicted once the fan-out is done.
        Returns the number of successful deliveries.
        """
        members = self.rooms.members_of(conversation_id)
        targets = []
        for connection_id in members:
            if connection_id == exclude_connection_id:
                continue
            connection = self.registry.get(connection_id)
            if connection is None:
                continue
            targets.append(connection)

        if not targets:
            logger.debug(f"No recipients for {event.kind.value} in conversation {conversation_id}")
            return 0

        results = await asyncio.gather(
            *(connection.transport.send(event) for connection in targets),
            return_exceptions=True,
        )

        delivered = 0
        stale: List[str] = []
        for connection, result in zip(targets, results):
            if isinstance(result, TransportFailure):
                logger.warning(f"Stale connection {connection.connection_id} in conversation {conversation_id}: {result.message}")
                stale.append(connection.connection_id)
            elif isinstance(result, Exception):
                logger.error(f"Error sending to connection {connection.connection_id} in conversation {conversation_id}: {result}", exc_info=result)
                stale.append(connection.connection_id)
            else:
                delivered += 1

        for connection_id in stale:
            await self.registry.evict(connection_id)
            logger.info(f"Cleaned up stale connection {connection_id} from conversation {conversation_id}")

        logger.debug(f"Broadcasted {event.kind.value} to {delivered}/{len(targets)} connections in conversation {conversation_id}")
        return delivered

    async def send_direct(self, connection_id: str, event: ConversationEvent) -> bool:
        connection = self.registry.get(connection_id)
        if connection is None:
            return False
        try:
            await connection.transport.send(event)
        except TransportFailure as e:
            logger.warning(f"Direct {event.kind.value} to {connection_id} failed: {e.message}")
            return False
        return True

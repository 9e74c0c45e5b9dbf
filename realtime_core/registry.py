import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Set

from logging_config import get_logger
from realtime_core.auth import AuthGate
from realtime_core.errors import AuthError, UnknownConnection
from realtime_core.ports import UserIdentity
from realtime_core.transports import Transport, TransportKind

logger = get_logger(__name__)

EvictHook = Callable[[str], None]


@dataclass
class Connection:
    connection_id: str
    transport: Transport
    transport_kind: TransportKind
    connected_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    user: Optional[UserIdentity] = None

    @property
    def user_id(self) -> Optional[int]:
        return self.user.id if self.user else None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


class ConnectionRegistry:
    """In-memory map of live connections to their authenticated identity.

    A connection is ``unauthenticated`` after ``admit`` and ``authenticated``
    after a successful ``authenticate``; ``evict`` is terminal from either
    state. All mutations run under ``self.lock``, which the room index shares
    so that eviction and room removal commit as one step.
    """

    def __init__(self, gate: AuthGate):
        self.gate = gate
        self.lock = asyncio.Lock()
        self._connections: Dict[str, Connection] = {}
        self._user_connections: Dict[int, Set[str]] = {}
        self._evict_hooks: List[EvictHook] = []

    def on_evict(self, hook: EvictHook) -> None:
        """Register a synchronous hook run inside the eviction critical section."""
        self._evict_hooks.append(hook)

    async def admit(self, connection_id: str, transport: Transport) -> Connection:
        async with self.lock:
            connection = Connection(
                connection_id=connection_id,
                transport=transport,
                transport_kind=transport.kind,
            )
            self._connections[connection_id] = connection
        logger.info(f"Admitted connection {connection_id} ({transport.kind.value})")
        return connection

    async def authenticate(self, connection_id: str, credential: Optional[str]) -> UserIdentity:
        if connection_id not in self._connections:
            raise UnknownConnection()

        # Credential verification may hit the user directory; keep it outside the lock
        user = await self.gate.authenticate(credential)

        async with self.lock:
            connection = self._connections.get(connection_id)
            if connection is None:
                logger.info(f"Connection {connection_id} closed during authentication, discarding result")
                raise UnknownConnection()
            if connection.user is not None and connection.user.id != user.id:
                raise AuthError("Connection is already authenticated as another user")
            connection.user = user
            self._user_connections.setdefault(user.id, set()).add(connection_id)

        logger.info(f"User {user.name} (ID: {user.id}) authenticated on connection {connection_id}")
        return user

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def is_registered(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def resolve_user(self, connection_id: str) -> Optional[int]:
        connection = self._connections.get(connection_id)
        return connection.user_id if connection else None

    def connections_of(self, user_id: int) -> Set[str]:
        return set(self._user_connections.get(user_id, ()))

    async def evict(self, connection_id: str) -> bool:
        """Drop all state for ``connection_id``, room membership included.

        Returns False when the connection was already gone.
        """
        async with self.lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return False
            if connection.user_id is not None:
                user_connections = self._user_connections.get(connection.user_id)
                if user_connections is not None:
                    user_connections.discard(connection_id)
                    if not user_connections:
                        del self._user_connections[connection.user_id]
            for hook in self._evict_hooks:
                hook(connection_id)

        logger.info(f"Evicted connection {connection_id} (user: {connection.user_id}, remaining connections: {len(self._connections)})")
        return True

    def __len__(self) -> int:
        return len(self._connections)

    def authenticated_user_count(self) -> int:
        return len(self._user_connections)

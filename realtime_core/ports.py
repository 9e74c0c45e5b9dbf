"""Contracts between the realtime core and its external collaborators."""
from typing import Optional, Protocol

from pydantic import BaseModel


class UserIdentity(BaseModel):
    id: int
    name: str
    email: str


class PersistedMessage(BaseModel):
    id: int
    conversation_id: int
    sender_id: int
    sender_name: str
    content: str
    message_type: str = "text"
    is_read: bool = False
    created_at: str


class TokenVerifier(Protocol):
    def verify(self, token: str) -> int:
        """Return the user id carried by ``token`` or raise ``InvalidCredential``."""
        ...


class UserDirectory(Protocol):
    async def find_by_id(self, user_id: int) -> Optional[UserIdentity]: ...


class MessageStore(Protocol):
    async def conversation_exists(self, conversation_id: int) -> bool: ...

    async def is_participant(self, conversation_id: int, user_id: int) -> bool: ...

    async def persist(
        self, conversation_id: int, sender_id: int, content: str, message_type: str = "text"
    ) -> PersistedMessage: ...

    async def mark_read(self, conversation_id: int, reader_id: int) -> int: ...

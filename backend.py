import json
from datetime import datetime, timezone
from typing import Dict, List, Optional

import redis.asyncio as redis

from constants import REDIS_DB, REDIS_HOST, REDIS_PASSWORD, REDIS_PORT
from logging_config import get_logger
from realtime_core.ports import PersistedMessage, UserIdentity
from redis_keys import (
    REDIS_CONVERSATION_KEY,
    REDIS_CONVERSATION_MESSAGES_KEY,
    REDIS_CONVERSATION_PAIR_KEY,
    REDIS_CONVERSATION_SEQ,
    REDIS_MESSAGE_KEY,
    REDIS_MESSAGE_SEQ,
    REDIS_UNREAD_KEY,
    REDIS_USER_CONVERSATIONS_KEY,
    REDIS_USER_KEY,
)

logger = get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RedisBackend:
    """Redis-backed message store and user directory."""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.redis_client = client or redis.Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            password=REDIS_PASSWORD,
            db=REDIS_DB,
            decode_responses=True,
        )

    async def ping(self) -> bool:
        try:
            await self.redis_client.ping()
            logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
            return True
        except Exception as e:
            logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
            raise

    async def close(self) -> None:
        await self.redis_client.aclose()

    # ---------- users ----------

    async def save_user(self, user: UserIdentity) -> UserIdentity:
        key = REDIS_USER_KEY.format(user_id=user.id)
        await self.redis_client.hset(key, mapping={k: str(v) for k, v in user.model_dump().items()})
        logger.debug(f"Stored user {user.id}")
        return user

    async def find_by_id(self, user_id: int) -> Optional[UserIdentity]:
        data = await self.redis_client.hgetall(REDIS_USER_KEY.format(user_id=user_id))
        if not data:
            logger.debug(f"User {user_id} not found in Redis")
            return None
        return UserIdentity(id=int(data["id"]), name=data.get("name", ""), email=data.get("email", ""))

    # ---------- conversations ----------

    async def get_conversation(self, conversation_id: int) -> Optional[Dict[str, str]]:
        data = await self.redis_client.hgetall(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id))
        return data or None

    async def conversation_exists(self, conversation_id: int) -> bool:
        key = REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id)
        return bool(await self.redis_client.exists(key))

    async def is_participant(self, conversation_id: int, user_id: int) -> bool:
        conversation = await self.get_conversation(conversation_id)
        if not conversation:
            return False
        return str(user_id) in (conversation.get("participant1_id"), conversation.get("participant2_id"))

    async def get_or_create_conversation(self, user_id: int, other_user_id: int) -> int:
        """Return the two-party conversation id, creating it on first use."""
        low, high = sorted((user_id, other_user_id))
        pair_key = REDIS_CONVERSATION_PAIR_KEY.format(low=low, high=high)
        existing = await self.redis_client.get(pair_key)
        if existing:
            return int(existing)

        conversation_id = await self.redis_client.incr(REDIS_CONVERSATION_SEQ)
        conversation_key = REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id)
        now = _now()
        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(
                conversation_key,
                mapping={
                    "id": conversation_id,
                    "participant1_id": low,
                    "participant2_id": high,
                    "created_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                },
            )
            for participant in (low, high):
                pipe.zadd(REDIS_USER_CONVERSATIONS_KEY.format(user_id=participant), {conversation_id: now.timestamp()})
            await pipe.execute()

        # The pair is claimed only once the conversation is fully written
        if not await self.redis_client.set(pair_key, conversation_id, nx=True):
            async with self.redis_client.pipeline(transaction=True) as pipe:
                pipe.delete(conversation_key)
                for participant in (low, high):
                    pipe.zrem(REDIS_USER_CONVERSATIONS_KEY.format(user_id=participant), conversation_id)
                await pipe.execute()
            winner = int(await self.redis_client.get(pair_key))
            logger.debug(f"Discarded conversation {conversation_id}, pair {low}:{high} already bound to {winner}")
            return winner

        logger.info(f"Created conversation {conversation_id} between users {low} and {high}")
        return conversation_id

    async def list_conversations(self, user_id: int) -> List[dict]:
        ids = await self.redis_client.zrevrange(REDIS_USER_CONVERSATIONS_KEY.format(user_id=user_id), 0, -1)
        conversations = []
        for conversation_id in ids:
            conversation = await self.get_conversation(int(conversation_id))
            if not conversation:
                continue
            participants = (conversation["participant1_id"], conversation["participant2_id"])
            other_id = int(participants[1] if participants[0] == str(user_id) else participants[0])
            other = await self.find_by_id(other_id)
            last = await self.get_messages(int(conversation_id), limit=1)
            unread = await self.redis_client.scard(
                REDIS_UNREAD_KEY.format(conversation_id=conversation_id, user_id=user_id)
            )
            conversations.append({
                "conversation_id": int(conversation_id),
                "last_activity": conversation.get("updated_at"),
                "other_user_id": other_id,
                "other_user_name": other.name if other else None,
                "other_user_email": other.email if other else None,
                "last_message": last[-1].content if last else None,
                "last_message_time": last[-1].created_at if last else None,
                "last_message_sender_id": last[-1].sender_id if last else None,
                "unread_count": unread,
            })
        return conversations

    # ---------- messages ----------

    async def persist(
        self, conversation_id: int, sender_id: int, content: str, message_type: str = "text"
    ) -> PersistedMessage:
        conversation = await self.get_conversation(conversation_id)
        sender = await self.find_by_id(sender_id)
        message_id = await self.redis_client.incr(REDIS_MESSAGE_SEQ)
        now = _now()
        message = PersistedMessage(
            id=message_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            sender_name=sender.name if sender else "",
            content=content,
            message_type=message_type,
            is_read=False,
            created_at=now.isoformat(),
        )

        async with self.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(
                REDIS_MESSAGE_KEY.format(message_id=message_id),
                mapping={k: json.dumps(v) for k, v in message.model_dump().items()},
            )
            pipe.rpush(REDIS_CONVERSATION_MESSAGES_KEY.format(conversation_id=conversation_id), message_id)
            pipe.hset(REDIS_CONVERSATION_KEY.format(conversation_id=conversation_id), "updated_at", now.isoformat())
            if conversation:
                for key in ("participant1_id", "participant2_id"):
                    participant = conversation.get(key)
                    pipe.zadd(REDIS_USER_CONVERSATIONS_KEY.format(user_id=participant), {conversation_id: now.timestamp()})
                    if participant != str(sender_id):
                        pipe.sadd(REDIS_UNREAD_KEY.format(conversation_id=conversation_id, user_id=participant), message_id)
            await pipe.execute()

        logger.info(f"Message {message_id} persisted in conversation {conversation_id}")
        return message

    async def get_messages(self, conversation_id: int, limit: int = 50) -> List[PersistedMessage]:
        """Latest ``limit`` messages, oldest first."""
        key = REDIS_CONVERSATION_MESSAGES_KEY.format(conversation_id=conversation_id)
        ids = await self.redis_client.lrange(key, -limit, -1)
        messages = []
        for message_id in ids:
            data = await self.redis_client.hgetall(REDIS_MESSAGE_KEY.format(message_id=message_id))
            if not data:
                continue
            messages.append(PersistedMessage(**{k: json.loads(v) for k, v in data.items()}))
        return messages

    async def mark_read(self, conversation_id: int, reader_id: int) -> int:
        unread_key = REDIS_UNREAD_KEY.format(conversation_id=conversation_id, user_id=reader_id)
        ids = await self.redis_client.smembers(unread_key)
        if not ids:
            return 0
        async with self.redis_client.pipeline(transaction=True) as pipe:
            for message_id in ids:
                pipe.hset(REDIS_MESSAGE_KEY.format(message_id=message_id), "is_read", json.dumps(True))
            pipe.delete(unread_key)
            await pipe.execute()
        logger.debug(f"Marked {len(ids)} messages read in conversation {conversation_id} for user {reader_id}")
        return len(ids)


redis_backend = RedisBackend()

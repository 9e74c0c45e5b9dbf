from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List

from constants import MESSAGE_HISTORY_LIMIT
from logging_config import get_logger
from realtime_core.hub import ChatHub
from realtime_core.ports import PersistedMessage, UserIdentity
from routers.dependencies import get_current_user, get_hub, get_store
from schemas.messages import (
    ConversationSummary,
    SendMessageRequest,
    StartConversationRequest,
    StartConversationResponse,
    StatusResponse,
)

logger = get_logger(__name__)

messages_router = APIRouter(prefix="/api/messages", tags=["messages"])


async def ensure_participant(store, conversation_id: int, user_id: int) -> None:
    if not await store.conversation_exists(conversation_id):
        raise HTTPException(status_code=404, detail="Conversation not found")
    if not await store.is_participant(conversation_id, user_id):
        logger.warning(f"User {user_id} denied access to conversation {conversation_id}")
        raise HTTPException(status_code=403, detail="Access denied")


@messages_router.get("/conversations", response_model=List[ConversationSummary])
async def list_conversations(user: UserIdentity = Depends(get_current_user), store=Depends(get_store)):
    conversations = await store.list_conversations(user.id)
    logger.info(f"Returning {len(conversations)} conversations for user {user.id}")
    return conversations


@messages_router.post("/conversations", response_model=StartConversationResponse)
async def start_conversation(
    body: StartConversationRequest,
    user: UserIdentity = Depends(get_current_user),
    store=Depends(get_store),
):
    if body.otherUserId == user.id:
        raise HTTPException(status_code=400, detail="Cannot start conversation with yourself")
    other = await store.find_by_id(body.otherUserId)
    if other is None:
        raise HTTPException(status_code=404, detail="User not found")
    conversation_id = await store.get_or_create_conversation(user.id, other.id)
    return StartConversationResponse(conversationId=conversation_id)


@messages_router.get("/conversations/{conversation_id}/messages", response_model=List[PersistedMessage])
async def get_messages(
    conversation_id: int,
    limit: int = Query(MESSAGE_HISTORY_LIMIT, ge=1, le=200),
    user: UserIdentity = Depends(get_current_user),
    store=Depends(get_store),
):
    await ensure_participant(store, conversation_id, user.id)
    return await store.get_messages(conversation_id, limit=limit)


@messages_router.post(
    "/conversations/{conversation_id}/messages",
    response_model=PersistedMessage,
    status_code=201,
)
async def send_message(
    conversation_id: int,
    body: SendMessageRequest,
    user: UserIdentity = Depends(get_current_user),
    store=Depends(get_store),
    hub: ChatHub = Depends(get_hub),
):
    if not body.content or not body.content.strip():
        raise HTTPException(status_code=400, detail="Message content cannot be empty")
    await ensure_participant(store, conversation_id, user.id)

    logger.info(f"User {user.id} sending message to conversation {conversation_id}")
    message = await store.persist(conversation_id, user.id, body.content.strip(), body.messageType or "text")
    await hub.publish_message(message)
    return message


@messages_router.put("/conversations/{conversation_id}/mark-read", response_model=StatusResponse)
async def mark_read(
    conversation_id: int,
    user: UserIdentity = Depends(get_current_user),
    store=Depends(get_store),
):
    await ensure_participant(store, conversation_id, user.id)
    await store.mark_read(conversation_id, user.id)
    return StatusResponse(message="Messages marked as read")

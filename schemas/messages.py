from pydantic import BaseModel
from typing import Optional


class StartConversationRequest(BaseModel):
    otherUserId: int

class StartConversationResponse(BaseModel):
    conversationId: int

class SendMessageRequest(BaseModel):
    content: str
    messageType: Optional[str] = "text"

class ConversationSummary(BaseModel):
    conversation_id: int
    last_activity: Optional[str]
    other_user_id: int
    other_user_name: Optional[str]
    other_user_email: Optional[str]
    last_message: Optional[str] = None
    last_message_time: Optional[str] = None
    last_message_sender_id: Optional[int] = None
    unread_count: int = 0

class StatusResponse(BaseModel):
    message: str

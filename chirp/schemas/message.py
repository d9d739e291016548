from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class SendMessageRequest(BaseModel):
    # both optional so a missing field is reported as a 400, not a 422
    recipientId: Optional[str] = None
    content: Optional[str] = None


class MessageOut(BaseModel):
    id: str
    senderId: str
    senderName: str
    recipientId: str
    recipientName: str
    content: str
    timestamp: datetime
    read: bool


class ConversationOut(BaseModel):
    id: str
    participantName: str
    lastMessage: str
    lastMessageTime: datetime
    unreadCount: int


class ReadAck(BaseModel):
    message: str = "Messages marked as read"
    updated: int


class UnreadCount(BaseModel):
    unreadCount: int

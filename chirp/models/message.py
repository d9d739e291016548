from datetime import datetime
from typing import TypedDict


class MessageDocument(TypedDict, total=False):
    _id: str
    sender_id: str
    recipient_id: str
    content: str
    created_at: datetime
    # flipped once by the read-state reconciler, never reset
    read: bool

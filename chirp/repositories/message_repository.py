import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional

from motor.motor_asyncio import AsyncIOMotorClientSession, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

from chirp.models.message import MessageDocument
from chirp.repositories.base_repository import STORAGE_UNAVAILABLE, storage_errors
from chirp.utils.errors import StorageError

logger = logging.getLogger(__name__)

# fields the conversation list needs; content is kept for the preview
SUMMARY_PROJECTION = {"sender_id": 1, "recipient_id": 1, "content": 1, "created_at": 1, "read": 1}


def _utc_now_ms() -> datetime:
    # BSON dates carry millisecond precision
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=now.microsecond // 1000 * 1000)


def _normalize(doc: Dict[str, Any]) -> MessageDocument:
    doc["_id"] = str(doc.get("_id"))
    created_at = doc.get("created_at")
    if isinstance(created_at, datetime) and created_at.tzinfo is None:
        doc["created_at"] = created_at.replace(tzinfo=timezone.utc)
    return doc


def _between(user_a: str, user_b: str) -> Dict[str, Any]:
    return {
        "$or": [
            {"sender_id": user_a, "recipient_id": user_b},
            {"sender_id": user_b, "recipient_id": user_a},
        ]
    }


class MessageRepository:

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["messages"]

    async def ensure_indexes(self) -> None:
        await self.collection.create_index(
            [("sender_id", ASCENDING), ("recipient_id", ASCENDING), ("created_at", ASCENDING)]
        )
        await self.collection.create_index([("recipient_id", ASCENDING), ("read", ASCENDING)])
        await self.collection.create_index([("created_at", DESCENDING)])

    async def start_session(self) -> AsyncIOMotorClientSession:
        return await self._db.client.start_session()

    @storage_errors
    async def save_message(self, sender_id: str, recipient_id: str, content: str) -> MessageDocument:
        doc: MessageDocument = {
            "sender_id": sender_id,
            "recipient_id": recipient_id,
            "content": content,
            "created_at": _utc_now_ms(),
            "read": False,
        }
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return _normalize(doc)

    @storage_errors
    async def get_between(self, user_a: str, user_b: str) -> List[MessageDocument]:
        cursor = self.collection.find(_between(user_a, user_b)).sort(
            [("created_at", ASCENDING), ("_id", ASCENDING)]
        )
        items = await cursor.to_list(length=None)
        return [_normalize(it) for it in items]

    @storage_errors
    async def has_history(self, user_a: str, user_b: str) -> bool:
        return await self.collection.find_one(_between(user_a, user_b), {"_id": 1}) is not None

    async def iter_involving(self, user_id: str) -> AsyncIterator[MessageDocument]:
        query = {"$or": [{"sender_id": user_id}, {"recipient_id": user_id}]}
        try:
            async for doc in self.collection.find(query, SUMMARY_PROJECTION):
                yield _normalize(doc)
        except PyMongoError as exc:
            logger.exception("message store: iter_involving failed for %s", user_id)
            raise StorageError(STORAGE_UNAVAILABLE) from exc

    @storage_errors
    async def mark_read(
        self,
        receiver_id: str,
        from_user_id: str,
        session: Optional[AsyncIOMotorClientSession] = None,
    ) -> int:
        query = {"recipient_id": receiver_id, "sender_id": from_user_id, "read": False}
        if session is not None:
            result = await self.collection.update_many(query, {"$set": {"read": True}}, session=session)
        else:
            result = await self.collection.update_many(query, {"$set": {"read": True}})
        return result.modified_count or 0

    @storage_errors
    async def count_unread(self, receiver_id: str, from_user_id: Optional[str] = None) -> int:
        query: Dict[str, Any] = {"recipient_id": receiver_id, "read": False}
        if from_user_id:
            query["sender_id"] = from_user_id
        return await self.collection.count_documents(query)

import logging
from typing import Any, Callable, Optional

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from chirp.core.config import settings

logger = logging.getLogger(__name__)

ClientFactory = Callable[..., Any]

_client: Optional[AsyncIOMotorClient] = None
_db: Optional[AsyncIOMotorDatabase] = None


async def connect_to_mongo(client_factory: ClientFactory = AsyncIOMotorClient) -> None:
    global _client, _db
    if _client is not None:
        return
    # tz_aware so created_at comes back as an aware UTC datetime
    _client = client_factory(settings.MONGODB_URI, tz_aware=True)
    _db = _client[settings.MONGODB_DB]
    logger.info("MongoDB client ready for database %s", settings.MONGODB_DB)


async def close_mongo_connection() -> None:
    global _client, _db
    if _client is None:
        return
    _client.close()
    _client = None
    _db = None
    logger.info("MongoDB client closed")


def get_database() -> AsyncIOMotorDatabase:
    if _db is None:
        raise RuntimeError("MongoDB client is not connected")
    return _db


async def mongo_db_dependency() -> AsyncIOMotorDatabase:
    return get_database()

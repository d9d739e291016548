from typing import Dict, Iterable, Optional

from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorDatabase

from chirp.models.user import UserDocument
from chirp.repositories.base_repository import storage_errors

UNKNOWN_USER = "Unknown user"


def display_name(user: Optional[UserDocument]) -> str:
    if not user:
        return UNKNOWN_USER
    return user.get("username") or user.get("full_name") or user.get("email") or UNKNOWN_USER


class UserRepository:
    """Lookups on the users collection, which the account service writes."""

    def __init__(self, db: AsyncIOMotorDatabase) -> None:
        self._db = db

    @property
    def collection(self):
        return self._db["users"]

    @storage_errors
    async def get_user_by_id(self, user_id: str) -> Optional[UserDocument]:

        if not user_id or not ObjectId.is_valid(user_id):
            return None
        user = await self.collection.find_one({"_id": ObjectId(user_id)})
        if user:
            user["_id"] = str(user["_id"])  # normalize to string for API layer
        return user

    @storage_errors
    async def get_display_names(self, user_ids: Iterable[str]) -> Dict[str, str]:
        """Resolve many ids in one query; unknown or malformed ids map to the placeholder."""
        ids = {uid for uid in user_ids if uid}
        names = {uid: UNKNOWN_USER for uid in ids}
        oids = [ObjectId(uid) for uid in ids if ObjectId.is_valid(uid)]
        if not oids:
            return names
        cursor = self.collection.find(
            {"_id": {"$in": oids}}, {"username": 1, "full_name": 1, "email": 1}
        )
        async for user in cursor:
            names[str(user["_id"])] = display_name(user)
        return names

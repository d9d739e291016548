from typing import Optional

from fastapi import Depends, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from motor.motor_asyncio import AsyncIOMotorDatabase

from chirp.database.connection import mongo_db_dependency
from chirp.repositories.message_repository import MessageRepository
from chirp.repositories.user_repository import UserRepository
from chirp.services.chat_service import ChatService
from chirp.utils.errors import AuthError
from chirp.utils.notifications import Notifier
from chirp.utils.security import decode_access_token
from chirp.utils.websocket_manager import PresenceRegistry

bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme)) -> dict:
    if credentials is None:
        raise AuthError("Not authenticated")
    payload = decode_access_token(credentials.credentials)
    return {"_id": payload.sub}


def get_presence_registry(request: Request) -> PresenceRegistry:
    return request.app.state.presence


def get_notifier(request: Request) -> Notifier:
    return request.app.state.dispatcher


def build_chat_service(db: AsyncIOMotorDatabase, notifier: Optional[Notifier] = None) -> ChatService:
    return ChatService(MessageRepository(db), UserRepository(db), notifier)


def get_chat_service(
    db: AsyncIOMotorDatabase = Depends(mongo_db_dependency),
    notifier: Notifier = Depends(get_notifier),
) -> ChatService:
    return build_chat_service(db, notifier)

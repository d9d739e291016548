from typing import List

from fastapi import APIRouter, Depends

from chirp.schemas.message import ConversationOut
from chirp.services.chat_service import ChatService
from chirp.utils.dependencies import get_chat_service, get_current_user


router = APIRouter(prefix="/conversations", tags=["chat"])


@router.get("", response_model=List[ConversationOut])
async def list_conversations(current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.list_conversations(current_user["_id"])

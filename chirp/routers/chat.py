import asyncio
import json
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from redis.exceptions import RedisError

from chirp.database.connection import get_database
from chirp.schemas.message import MessageOut, ReadAck, SendMessageRequest, UnreadCount
from chirp.services.chat_service import ChatService
from chirp.utils.dependencies import build_chat_service, get_chat_service, get_current_user
from chirp.utils.errors import AuthError, ChatError
from chirp.utils.notifications import RealtimeDispatcher
from chirp.utils.realtime_bus import user_channel
from chirp.utils.security import decode_access_token
from chirp.utils.websocket_manager import PresenceRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["chat"])

PRESENCE_TTL_SECONDS = 60
HEARTBEAT_SECONDS = 30

# close codes for the websocket handshake
WS_UNAUTHORIZED = 4401
WS_FORBIDDEN = 4403


@router.get("/unread/count", response_model=UnreadCount)
async def unread_count(current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return UnreadCount(unreadCount=await service.unread_total(current_user["_id"]))


@router.get("/{other_user_id}", response_model=List[MessageOut])
async def get_history(other_user_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.get_history(current_user["_id"], other_user_id)


@router.post("/send", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message(body: SendMessageRequest, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    return await service.send_message(current_user["_id"], body.recipientId, body.content)


@router.put("/read/{partner_id}", response_model=ReadAck)
async def mark_read(partner_id: str, current_user: dict = Depends(get_current_user), service: ChatService = Depends(get_chat_service)):
    updated = await service.mark_read(current_user["_id"], partner_id)
    return ReadAck(updated=updated)


async def _send_error(websocket: WebSocket, message: str) -> None:
    await websocket.send_json({"event": "error", "message": message})


def _forwarder(dispatcher: RealtimeDispatcher, registry: PresenceRegistry, user_id: str, websocket: WebSocket):
    async def forward(data: str) -> None:
        # only the connection currently registered for the user gets pushes
        if registry.lookup(user_id) is not websocket:
            return
        try:
            event = json.loads(data)
        except ValueError:
            logger.warning("dropping malformed bus event for %s", user_id)
            return
        await dispatcher.deliver_local(user_id, event, handle=websocket)
    return forward


async def _presence_heartbeat(bus, user_id: str) -> None:
    while True:
        try:
            await bus.set_presence(user_id, ttl_seconds=PRESENCE_TTL_SECONDS)
        except RedisError:
            logger.warning("presence heartbeat for %s failed", user_id, exc_info=True)
        await asyncio.sleep(HEARTBEAT_SECONDS)


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket):
    # token comes as ?token=..., the client then announces itself with a join frame
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=WS_UNAUTHORIZED)
        return
    try:
        claims = decode_access_token(token)
    except AuthError:
        await websocket.close(code=WS_UNAUTHORIZED)
        return

    await websocket.accept()
    registry: PresenceRegistry = websocket.app.state.presence
    dispatcher: RealtimeDispatcher = websocket.app.state.dispatcher
    bus = websocket.app.state.bus
    service = build_chat_service(get_database(), dispatcher)

    user_id: Optional[str] = None
    subscription = None
    background: List[asyncio.Task] = []
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes")
            try:
                frame = json.loads(raw) if raw is not None else None
            except ValueError:
                await _send_error(websocket, "Invalid JSON frame")
                continue
            if not isinstance(frame, dict):
                await _send_error(websocket, "Invalid frame")
                continue
            event = frame.get("event")

            if event == "join":
                announced = frame.get("userId")
                if announced != claims.sub:
                    logger.warning("join as %s refused for token subject %s", announced, claims.sub)
                    await websocket.close(code=WS_FORBIDDEN)
                    return
                if user_id is None:
                    user_id = announced
                    if registry.register(user_id, websocket) is not None:
                        logger.info("user %s reconnected, previous connection replaced", user_id)
                    if getattr(bus, "enabled", False):
                        subscription = await bus.subscribe(
                            user_channel(user_id), _forwarder(dispatcher, registry, user_id, websocket)
                        )
                        background.append(asyncio.create_task(subscription.run()))
                        background.append(asyncio.create_task(_presence_heartbeat(bus, user_id)))
                    logger.info("user %s joined (%d online)", user_id, len(registry))
                await websocket.send_json({"event": "joined", "userId": user_id})
                continue

            if event == "ping":
                await websocket.send_json({"event": "pong"})
                continue

            if user_id is None:
                await _send_error(websocket, "Join before sending events")
                continue

            if event == "markRead":
                partner_id = frame.get("partnerId")
                if not partner_id:
                    await _send_error(websocket, "partnerId is required")
                    continue
                try:
                    updated = await service.mark_read(user_id, partner_id)
                except ChatError as exc:
                    await _send_error(websocket, exc.detail)
                    continue
                await websocket.send_json({"event": "read", "partnerId": partner_id, "updated": updated})
                continue

            await _send_error(websocket, f"Unknown event: {event}")
    except WebSocketDisconnect:
        logger.info("connection for %s closed", user_id or claims.sub)
    finally:
        if user_id is not None:
            registry.unregister(user_id, websocket)
        for task in background:
            task.cancel()
        # let the reader finish before its pubsub is closed
        await asyncio.gather(*background, return_exceptions=True)
        if subscription is not None:
            await subscription.cancel()
        if user_id is not None and getattr(bus, "enabled", False) and not registry.is_online(user_id):
            try:
                await bus.clear_presence(user_id)
            except RedisError:
                logger.warning("clearing presence for %s failed", user_id, exc_info=True)

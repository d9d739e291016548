from fastapi import APIRouter, Depends, Request

from chirp.schemas.user import PresenceStatus
from chirp.utils.dependencies import get_current_user, get_presence_registry
from chirp.utils.websocket_manager import PresenceRegistry


router = APIRouter(prefix="/presence", tags=["chat"])


@router.get("/{user_id}", response_model=PresenceStatus)
async def presence(
    user_id: str,
    request: Request,
    current_user: dict = Depends(get_current_user),
    registry: PresenceRegistry = Depends(get_presence_registry),
):
    """
    Online when this worker holds a live connection for the user, or, with Redis
    configured, when any worker has refreshed the user's presence key.
    """
    online = registry.is_online(user_id)
    bus = request.app.state.bus
    if not online and getattr(bus, "enabled", False):
        online = await bus.is_online(user_id)
    return PresenceStatus(userId=user_id, online=online)

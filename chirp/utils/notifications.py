import asyncio
import json
import logging
from typing import Any, Dict, Optional, Protocol

from chirp.core.config import settings
from chirp.utils.realtime_bus import NoopBus, user_channel
from chirp.utils.websocket_manager import PresenceRegistry

logger = logging.getLogger(__name__)

NEW_MESSAGE = "newMessage"


def envelope(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {"event": event, "data": data}


class Notifier(Protocol):

    async def push(self, user_id: str, event: Dict[str, Any]) -> bool:
        ...


class NoopNotifier:

    async def push(self, user_id: str, event: Dict[str, Any]) -> bool:
        return False


class RealtimeDispatcher:
    """Pushes events to a user's live connection when there is one.

    Delivery is best effort: an offline user picks the message up on the next
    fetch, and a failing or stalled connection is dropped from the registry
    and logged. ``push`` never raises and returns within one timeout.
    """

    def __init__(self, registry: PresenceRegistry, bus=None, timeout: Optional[float] = None) -> None:
        self._registry = registry
        self._bus = bus or NoopBus()
        self._timeout = timeout or settings.PUSH_TIMEOUT_SECONDS

    async def push(self, user_id: str, event: Dict[str, Any]) -> bool:
        if getattr(self._bus, "enabled", False):
            try:
                await asyncio.wait_for(
                    self._bus.publish(user_channel(user_id), json.dumps(event)), self._timeout
                )
                return True
            except Exception:
                logger.warning("publish to %s failed, trying local delivery", user_id, exc_info=True)
        return await self.deliver_local(user_id, event)

    async def deliver_local(self, user_id: str, event: Dict[str, Any], handle: Optional[Any] = None) -> bool:
        handle = handle or self._registry.lookup(user_id)
        if handle is None:
            logger.debug("user %s offline, %s not pushed", user_id, event.get("event"))
            return False
        try:
            await asyncio.wait_for(handle.send_json(event), self._timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning("push of %s to %s timed out, dropping connection", event.get("event"), user_id)
        except Exception:
            logger.warning("push of %s to %s failed, dropping connection", event.get("event"), user_id, exc_info=True)
        self._registry.unregister(user_id, handle)
        return False

import asyncio
import json

import pytest

from chirp.utils.notifications import RealtimeDispatcher, envelope
from chirp.utils.websocket_manager import PresenceRegistry

pytestmark = pytest.mark.anyio


class RecordingHandle:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)


class BrokenHandle:
    async def send_json(self, data):
        raise RuntimeError("socket is closed")


class StalledHandle:
    async def send_json(self, data):
        await asyncio.sleep(3600)


class RecordingBus:
    enabled = True

    def __init__(self, fail=False, stall=False):
        self.fail = fail
        self.stall = stall
        self.published = []

    async def publish(self, channel, message):
        if self.fail:
            raise ConnectionError("redis down")
        if self.stall:
            await asyncio.sleep(3600)
        self.published.append((channel, message))


EVENT = envelope("newMessage", {"id": "m1", "content": "hi"})


async def test_push_to_online_user():
    registry = PresenceRegistry()
    handle = RecordingHandle()
    registry.register("bob", handle)

    assert await RealtimeDispatcher(registry).push("bob", EVENT) is True
    assert handle.sent == [EVENT]


async def test_push_to_offline_user_is_a_no_op():
    assert await RealtimeDispatcher(PresenceRegistry()).push("bob", EVENT) is False


async def test_broken_handle_is_swallowed_and_dropped():
    registry = PresenceRegistry()
    registry.register("bob", BrokenHandle())

    assert await RealtimeDispatcher(registry).push("bob", EVENT) is False
    assert registry.lookup("bob") is None


async def test_enabled_bus_publishes_on_user_channel():
    registry = PresenceRegistry()
    handle = RecordingHandle()
    registry.register("bob", handle)
    bus = RecordingBus()

    assert await RealtimeDispatcher(registry, bus).push("bob", EVENT) is True
    assert bus.published == [("user:bob", json.dumps(EVENT))]
    # the bus subscriber does the local write, not push itself
    assert handle.sent == []


async def test_failing_bus_falls_back_to_local_delivery():
    registry = PresenceRegistry()
    handle = RecordingHandle()
    registry.register("bob", handle)

    assert await RealtimeDispatcher(registry, RecordingBus(fail=True)).push("bob", EVENT) is True
    assert handle.sent == [EVENT]


async def test_stalled_handle_times_out_and_is_dropped():
    registry = PresenceRegistry()
    registry.register("bob", StalledHandle())

    pushed = await asyncio.wait_for(RealtimeDispatcher(registry, timeout=0.05).push("bob", EVENT), timeout=2)
    assert pushed is False
    assert registry.lookup("bob") is None


async def test_stalled_bus_falls_back_to_local_delivery():
    registry = PresenceRegistry()
    handle = RecordingHandle()
    registry.register("bob", handle)
    dispatcher = RealtimeDispatcher(registry, RecordingBus(stall=True), timeout=0.05)

    assert await asyncio.wait_for(dispatcher.push("bob", EVENT), timeout=2) is True
    assert handle.sent == [EVENT]

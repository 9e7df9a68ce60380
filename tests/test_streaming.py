"""Tests for LoopStreamManager event fan-out."""

import asyncio

import pytest

from agent_looper.loop.contracts import LoopEvent
from agent_looper.loop.streaming import LoopStreamManager


async def collect(manager):
    return [event async for event in manager.subscribe()]


def progress(message):
    return LoopEvent(kind="progress", payload=message)


class TestLoopStreamManager:
    """Test buffering, broadcast and shutdown."""

    @pytest.mark.asyncio
    async def test_events_before_subscribe_are_replayed(self):
        manager = LoopStreamManager()
        manager(progress("Looper started: x"))
        manager(LoopEvent(kind="result", payload={"ok": True}))
        manager.close()

        events = await collect(manager)

        assert [e.kind for e in events] == ["progress", "result"]
        assert events[1].payload == {"ok": True}

    @pytest.mark.asyncio
    async def test_broadcast_to_all_subscribers(self):
        manager = LoopStreamManager()
        first = asyncio.create_task(collect(manager))
        second = asyncio.create_task(collect(manager))
        await asyncio.sleep(0)
        assert manager.subscriber_count == 2

        manager(LoopEvent(kind="progress", payload="Iteration 1/3: x"))
        manager.close()

        assert [e.payload for e in await first] == ["Iteration 1/3: x"]
        assert [e.payload for e in await second] == ["Iteration 1/3: x"]
        assert manager.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_buffer_drops_oldest_when_full(self):
        manager = LoopStreamManager(buffer_size=2)
        for i in range(3):
            manager(progress(f"event {i}"))
        manager.close()

        events = await collect(manager)

        assert [e.payload for e in events] == ["event 1", "event 2"]
        assert manager.published_count == 3

    @pytest.mark.asyncio
    async def test_publish_after_close_is_dropped(self):
        manager = LoopStreamManager()
        manager.close()
        manager(progress("late"))

        assert manager.closed
        assert manager.published_count == 0
        assert await collect(manager) == []

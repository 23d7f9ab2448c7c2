from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from core.channel import EventChannel
from core.rate_limiter import RateLimiter
from core.spam import SpamDetector
from core.sweeper import BlockSweeper, TriggerRefresher


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def test_sweep_once_clears_expired_blocks_and_idle_spam_history() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    spam = SpamDetector(clock=clock)
    for _ in range(20):
        limiter.record("alice", "message")
    limiter.admit("alice", "message")
    spam.observe("alice")

    sweeper = BlockSweeper(limiter, spam)
    assert sweeper.sweep_once() == 0

    clock.advance(minutes=6)
    assert sweeper.sweep_once() == 1
    assert limiter.state.blocks == {}
    assert spam.recent_count("alice") == 0


def test_run_forever_stops_on_request() -> None:
    limiter = RateLimiter()
    sweeper = BlockSweeper(limiter, interval=timedelta(milliseconds=10))

    async def scenario() -> None:
        task = asyncio.create_task(sweeper.run_forever())
        await asyncio.sleep(0.05)
        sweeper.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())


def test_channel_delivers_in_order_and_rejects_after_close() -> None:
    async def scenario() -> list:
        channel = EventChannel(maxsize=5)
        for index in range(3):
            await channel.publish({"id": index})
        await channel.close()
        with pytest.raises(RuntimeError):
            await channel.publish({"id": 99})
        return [event["id"] async for event in channel]

    assert asyncio.run(scenario()) == [0, 1, 2]


def test_sweep_once_drops_idle_senders() -> None:
    clock = FakeClock()
    limiter = RateLimiter(clock=clock)
    for index in range(1000):
        limiter.admit(f"sender-{index}", "message")
    sweeper = BlockSweeper(limiter, SpamDetector(clock=clock))

    clock.advance(days=2)
    sweeper.sweep_once()

    assert len(limiter.state.activity) == 0


class FakeService:
    def __init__(self, changes: list[bool]) -> None:
        self._changes = changes
        self.refreshes = 0

    def refresh_triggers(self) -> bool:
        self.refreshes += 1
        if self._changes:
            return self._changes.pop(0)
        raise RuntimeError("store unavailable")


def test_trigger_refresher_keeps_running_after_failures() -> None:
    service = FakeService([False, True])
    refresher = TriggerRefresher(service, interval=timedelta(milliseconds=5))

    async def scenario() -> None:
        task = asyncio.create_task(refresher.run_forever())
        await asyncio.sleep(0.05)
        refresher.stop()
        await asyncio.wait_for(task, timeout=1)

    asyncio.run(scenario())

    assert service.refreshes > 2

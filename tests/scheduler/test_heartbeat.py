"""Tests for tickler/scheduler/heartbeat.py"""
from __future__ import annotations

import asyncio

import pytest

from tickler.core.errors import StoreError
from tickler.core.events import Event, EventType
from tickler.scheduler.heartbeat import HeartbeatMonitor, is_stalled


class TestIsStalled:
    def test_never_written_is_stalled(self):
        assert is_stalled(None, now=1_000.0)

    def test_recent_heartbeat_is_alive(self):
        assert not is_stalled(1_000.0, now=1_030.0, interval=60, missed_intervals=3)

    def test_three_missed_intervals_is_stalled(self):
        assert is_stalled(1_000.0, now=1_180.0, interval=60, missed_intervals=3)

    def test_just_under_threshold_is_alive(self):
        assert not is_stalled(1_000.0, now=1_179.0, interval=60, missed_intervals=3)


@pytest.mark.asyncio
class TestHeartbeatMonitor:
    async def test_start_beats_immediately(self, store):
        await store.initialize()
        monitor = HeartbeatMonitor(store, interval=60, clock=lambda: 1_234.5)
        await monitor.start()
        try:
            assert monitor.running
            assert await store.get_heartbeat() == 1_234.5
        finally:
            await monitor.stop()
            await store.close()
        assert not monitor.running

    async def test_beats_periodically(self, store):
        await store.initialize()
        ticks = iter(range(1, 1_000))
        monitor = HeartbeatMonitor(store, interval=0.05, clock=lambda: float(next(ticks)))
        await monitor.start()
        await asyncio.sleep(0.28)
        await monitor.stop()
        assert await store.get_heartbeat() >= 4.0
        await store.close()

    async def test_beat_emits_event(self, store, bus):
        await store.initialize()
        received: list[Event] = []

        async def handler(event: Event):
            received.append(event)

        bus.on("heartbeat:*", handler)
        monitor = HeartbeatMonitor(store, bus=bus, clock=lambda: 42.0)
        assert await monitor.beat() is True
        assert received[0].type == EventType.HEARTBEAT_BEAT
        assert received[0].data == {"timestamp": 42.0}
        await store.close()

    async def test_write_failure_is_not_fatal(self, store, bus, monkeypatch):
        await store.initialize()
        received: list[Event] = []

        async def handler(event: Event):
            received.append(event)

        async def broken(timestamp):
            raise StoreError("database is locked")

        bus.on(EventType.HEARTBEAT_ERROR, handler)
        monkeypatch.setattr(store, "upsert_heartbeat", broken)
        monitor = HeartbeatMonitor(store, interval=0.05, bus=bus)
        await monitor.start()
        await asyncio.sleep(0.12)
        assert monitor.running
        await monitor.stop()

        assert monitor.failures >= 2
        assert received and received[0].data["error"] == "database is locked"
        await store.close()

"""
HeartbeatMonitor — periodic liveness timestamp for a dead-man's switch.

The monitor only writes. An external watcher (see `tickler heartbeat-check`)
reads the timestamp and treats `missed_intervals` intervals of silence as a
stalled or crashed process. A failed write is logged and retried on the next
tick; the monitor never takes the process down.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from tickler.core.bus import EventBus
from tickler.core.errors import StoreError
from tickler.core.events import Event, EventType
from tickler.scheduler.store import IntentStore

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = 60.0
DEFAULT_MISSED_INTERVALS = 3


def is_stalled(
    last_heartbeat: float | None,
    now: float | None = None,
    interval: float = DEFAULT_INTERVAL,
    missed_intervals: int = DEFAULT_MISSED_INTERVALS,
) -> bool:
    """
    True when no heartbeat was written for `missed_intervals` intervals.

    A missing heartbeat (never written) counts as stalled.
    """
    if last_heartbeat is None:
        return True
    t = time.time() if now is None else now
    return t - last_heartbeat >= interval * missed_intervals


class HeartbeatMonitor:
    """Writes IntentStore heartbeats every `interval` seconds."""

    def __init__(
        self,
        store: IntentStore,
        interval: float = DEFAULT_INTERVAL,
        bus: EventBus | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._interval = interval
        self._bus = bus
        self._clock = clock
        self._task: asyncio.Task | None = None
        self._running = False
        self.failures = 0

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Beat once immediately, then keep beating in the background."""
        if self._running:
            logger.warning("HeartbeatMonitor already running")
            return
        self._running = True
        await self.beat()
        self._task = asyncio.create_task(self._loop(), name="tickler-heartbeat")
        logger.info(f"HeartbeatMonitor started (interval={self._interval}s)")

    async def stop(self) -> None:
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("HeartbeatMonitor stopped")

    async def beat(self) -> bool:
        """Write one heartbeat. Returns False (and logs) on failure."""
        now = self._clock()
        try:
            await self._store.upsert_heartbeat(now)
        except StoreError as e:
            self.failures += 1
            logger.error(f"Heartbeat write failed: {e.message}")
            await self._emit(EventType.HEARTBEAT_ERROR, {"error": e.message})
            return False
        logger.debug(f"Heartbeat written at {now}")
        await self._emit(EventType.HEARTBEAT_BEAT, {"timestamp": now})
        return True

    async def _loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._interval)
            await self.beat()

    async def _emit(self, event_type: str, data: dict) -> None:
        if self._bus is not None:
            await self._bus.emit(Event(type=event_type, source="heartbeat", data=data))

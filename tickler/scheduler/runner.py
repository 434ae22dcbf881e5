"""
JobRunner — in-memory timers for active intents.

Design:
- One timer task per armed intent id sleeps until the intent's next_run_time
  (a time in the past fires immediately)
- When due, the timer posts a Firing message on a queue; a bounded pool of
  fire workers runs the on_fire callback, so a slow executor never holds up
  other timers
- The timer waits for its firing to finish before computing the next
  occurrence: at most one fire per id is ever in flight
- Recurring intents are re-armed here. If a fire overran one or more
  occurrences, they collapse into a single immediate deferred fire
- Nothing here is durable; the runner is rebuilt from the store on restart
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from tickler.scheduler.intent import ScheduledIntent
from tickler.scheduler.triggers import Trigger, make_trigger

logger = logging.getLogger(__name__)

MAX_SLEEP = 60.0  # seconds; timers re-check the clock at least this often


OnFire = Callable[["Firing"], Awaitable[bool]]


@dataclass
class Firing:
    """One occurrence of an intent, handed from its timer to a fire worker."""

    intent: ScheduledIntent
    scheduled_for: float
    next_run: float | None  # following occurrence, None for one-offs
    on_fire: OnFire = field(repr=False)
    cancelled: bool = False
    done: asyncio.Future = field(
        default_factory=lambda: asyncio.get_running_loop().create_future(), repr=False
    )

    @property
    def intent_id(self) -> str:
        return self.intent.id

    def next_due(self, now: float) -> float | None:
        """
        When the intent is next due, as seen at `now` after this fire.

        An occurrence already passed at `now` means the fire overran; the
        runner collapses the missed occurrences into one fire due at `now`.
        """
        if self.next_run is None:
            return None
        return max(self.next_run, now)


class JobRunner:
    """
    Maps intent id → armed timer and fires intents through a worker pool.

    on_fire(firing) returns True to keep a recurring intent armed, False to
    stop (cancelled, or nothing left to run). Exceptions from on_fire are
    logged and treated as "keep going" for recurring intents.

    Usage:
        runner = JobRunner(max_concurrent_fires=4)
        await runner.start()
        runner.arm(intent, on_fire)
        runner.disarm(intent.id)
        await runner.stop()
    """

    def __init__(
        self,
        max_concurrent_fires: int = 4,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_workers = max(1, max_concurrent_fires)
        self._clock = clock
        self._timers: dict[str, asyncio.Task] = {}
        self._next: dict[str, float] = {}
        self._queued: dict[str, Firing] = {}
        self._queue: asyncio.Queue[Firing] | None = None
        self._workers: list[asyncio.Task] = []
        self._in_flight: set[str] = set()

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return bool(self._workers)

    async def start(self) -> None:
        """Start the fire-worker pool."""
        if self._workers:
            return
        queue: asyncio.Queue[Firing] = asyncio.Queue()
        self._queue = queue
        self._workers = [
            asyncio.create_task(self._worker(queue), name=f"tickler-fire-{i}")
            for i in range(self._max_workers)
        ]
        logger.info(f"JobRunner started with {self._max_workers} fire workers")

    async def stop(self) -> None:
        """Disarm everything, let in-flight fires finish, then stop workers."""
        for intent_id in list(self._timers):
            self.disarm(intent_id)
        if self._queue is not None:
            await self._queue.join()
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        logger.info("JobRunner stopped")

    # ── Public API ───────────────────────────────────────────────────────────

    def arm(self, intent: ScheduledIntent, on_fire: OnFire) -> None:
        """
        Schedule `intent` to fire at intent.next_run_time (or fire_at).

        Re-arming an id replaces its previous timer.
        """
        queue = self._queue
        if queue is None:
            raise RuntimeError("JobRunner.arm() called before start()")
        self.disarm(intent.id)
        due = intent.next_run_time or intent.fire_at or self._clock()
        trigger = make_trigger(intent)
        self._next[intent.id] = due
        task = asyncio.create_task(
            self._drive(intent, trigger, due, on_fire, queue),
            name=f"tickler-timer-{intent.id[:8]}",
        )
        self._timers[intent.id] = task
        task.add_done_callback(lambda t, i=intent.id: self._forget(i, t))
        logger.debug(f"Armed intent {intent.id} for {due}")

    def disarm(self, intent_id: str) -> None:
        """
        Cancel the pending timer for an id. No-op if absent.

        A firing that is queued but not started is dropped; one that is
        already running is allowed to complete.
        """
        queued = self._queued.pop(intent_id, None)
        if queued is not None:
            queued.cancelled = True
        task = self._timers.pop(intent_id, None)
        self._next.pop(intent_id, None)
        if task is not None and not task.done():
            task.cancel()
            logger.debug(f"Disarmed intent {intent_id}")

    def is_armed(self, intent_id: str) -> bool:
        return intent_id in self._timers

    def is_firing(self, intent_id: str) -> bool:
        return intent_id in self._in_flight

    def armed_ids(self) -> list[str]:
        return list(self._timers)

    def next_fire_times(self) -> dict[str, float]:
        """Pending fire time per armed id."""
        return dict(self._next)

    # ── Internals ────────────────────────────────────────────────────────────

    def _forget(self, intent_id: str, task: asyncio.Task) -> None:
        if self._timers.get(intent_id) is task:
            del self._timers[intent_id]
            self._next.pop(intent_id, None)

    async def _drive(
        self,
        intent: ScheduledIntent,
        trigger: Trigger,
        due: float,
        on_fire: OnFire,
        queue: asyncio.Queue[Firing],
    ) -> None:
        """Timer loop for one intent: sleep, fire, wait, re-arm."""
        while True:
            self._next[intent.id] = due
            await self._sleep_until(due)

            next_run = trigger.next_after(due)
            firing = Firing(intent=intent, scheduled_for=due, next_run=next_run, on_fire=on_fire)
            self._queued[intent.id] = firing
            await queue.put(firing)
            # shield: a disarm must not cancel a firing a worker already owns
            keep = await asyncio.shield(firing.done)

            if not keep or next_run is None:
                return
            now = self._clock()
            if next_run <= now:
                missed = trigger.latest_at_or_before(now, since=next_run)
                logger.debug(f"Intent {intent.id} overran its next occurrence; firing once now")
                due = missed if missed is not None else next_run
            else:
                due = next_run

    async def _sleep_until(self, due: float) -> None:
        while True:
            remaining = due - self._clock()
            if remaining <= 0:
                return
            await asyncio.sleep(min(remaining, MAX_SLEEP))

    async def _worker(self, queue: asyncio.Queue[Firing]) -> None:
        while True:
            firing = await queue.get()
            try:
                await self._fire(firing)
            finally:
                queue.task_done()

    async def _fire(self, firing: Firing) -> None:
        intent_id = firing.intent_id
        if self._queued.get(intent_id) is firing:
            del self._queued[intent_id]
        if firing.cancelled:
            logger.debug(f"Dropping cancelled firing for {intent_id}")
            _resolve(firing, False)
            return
        self._in_flight.add(intent_id)
        try:
            keep = await firing.on_fire(firing)
        except Exception as e:
            logger.error(f"on_fire for intent {intent_id} raised: {e}", exc_info=e)
            keep = firing.intent.is_recurring
        finally:
            self._in_flight.discard(intent_id)
        _resolve(firing, bool(keep))


def _resolve(firing: Firing, keep: bool) -> None:
    if not firing.done.done():
        firing.done.set_result(keep)

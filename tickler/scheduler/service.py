"""
SchedulerService — the façade over parser, store, runner, rehydration and
heartbeat.

Per-intent state machine:
    ONE_OFF    Scheduled → Firing → Completed | Failed
    RECURRING  Scheduled → Firing → Scheduled (loop)
    any non-terminal state → Cancelled

The service owns exactly one executor, injected at construction by the
composition root: async (task_type, payload) -> summary. Every fire goes
through it; the service never looks inside a payload.

Delivery is at-least-once: mark_fired runs only after the executor returns,
so a crash in between re-fires the intent on the next start. Executors must
tolerate duplicates.

A running service also re-reads the store every poll_interval seconds so
intents scheduled or cancelled by another process (e.g. the CLI) are picked
up without a restart.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from tickler.core.bus import EventBus
from tickler.core.config import TicklerConfig
from tickler.core.errors import (
    ConfigError,
    ExecutionError,
    SchedulerNotStartedError,
    StoreError,
)
from tickler.core.events import Event, EventType
from tickler.scheduler.heartbeat import HeartbeatMonitor, is_stalled
from tickler.scheduler.intent import (
    ExecutionRecord,
    FireResult,
    FireStatus,
    ScheduledIntent,
    ScheduleKind,
)
from tickler.scheduler.parser import NaturalLanguageParser, TimeExpressionParser, split_reminder
from tickler.scheduler.rehydrate import CatchUpPolicy, RehydrationBootstrapper, RehydrationReport
from tickler.scheduler.runner import Firing, JobRunner
from tickler.scheduler.store import IntentStore

logger = logging.getLogger(__name__)

Executor = Callable[[str, bytes], Awaitable[str]]


@dataclass
class ScheduleConfirmation:
    """Returned by schedule(): enough to confirm back to the user."""

    id: str
    description: str
    kind: ScheduleKind
    resolved_time: float
    recurrence_spec: str | None = None
    resolved_text: str = ""


@dataclass
class UpcomingFire:
    id: str
    description: str
    next_run_time: float


@dataclass
class SchedulerStatus:
    last_heartbeat: float | None
    heartbeat_age: float | None
    stalled: bool
    active_count: int
    upcoming: list[UpcomingFire] = field(default_factory=list)


class SchedulerService:
    """
    Durable intent scheduler.

    Usage:
        service = SchedulerService(IntentStore(path), executor=my_executor)
        await service.start()          # rehydrates before accepting work
        conf = await service.schedule(b"check the weather", "weather", "tomorrow at 8am")
        await service.cancel(conf.id)
        await service.stop()

    A service that is only open()ed never fires anything and may be built
    without an executor.
    """

    def __init__(
        self,
        store: IntentStore,
        executor: Executor | None = None,
        parser: TimeExpressionParser | None = None,
        runner: JobRunner | None = None,
        bus: EventBus | None = None,
        config: TicklerConfig | None = None,
        clock: Callable[[], float] = time.time,
        poll_interval: float | None = None,
    ) -> None:
        self._config = config or TicklerConfig()
        sched = self._config.scheduler
        self._store = store
        self._executor = executor
        self._clock = clock
        self._parser = parser or NaturalLanguageParser(grace_seconds=sched.grace_seconds)
        self._runner = runner or JobRunner(
            max_concurrent_fires=sched.max_concurrent_fires, clock=clock
        )
        self._bus = bus or EventBus()
        self._fire_timeout = sched.fire_timeout
        self._poll_interval = sched.poll_interval if poll_interval is None else poll_interval
        self._bootstrapper = RehydrationBootstrapper(
            store, self._runner, self._on_fire, policy=CatchUpPolicy(sched.catch_up)
        )
        self._heartbeat: HeartbeatMonitor | None = None
        if self._config.heartbeat.enabled:
            self._heartbeat = HeartbeatMonitor(
                store, interval=self._config.heartbeat.interval_seconds, bus=self._bus, clock=clock
            )
        self._poll_task: asyncio.Task | None = None
        self._opened = False
        self._started = False

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def runner(self) -> JobRunner:
        return self._runner

    @property
    def started(self) -> bool:
        return self._started

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    async def open(self) -> None:
        """
        Open the store without running timers.

        For processes that only write or read intents (the CLI). Intents
        scheduled this way are persisted but not armed; a running scheduler
        picks them up on its next sync.
        """
        await self._store.initialize()
        self._opened = True

    async def start(self, now: float | None = None) -> RehydrationReport:
        """
        Open the store, rehydrate every active intent, start the heartbeat.

        Raises RehydrationError if prior state cannot be read; the service
        then stays unstarted and refuses new schedules. Raises ConfigError
        when the service was built without an executor.
        """
        if self._executor is None:
            raise ConfigError("SchedulerService.start() needs an executor")
        await self.open()
        await self._runner.start()
        try:
            report = await self._bootstrapper.run(now=self._clock() if now is None else now)
        except Exception:
            await self._runner.stop()
            raise
        self._started = True
        if self._heartbeat is not None:
            await self._heartbeat.start()
        if self._poll_interval > 0:
            self._poll_task = asyncio.create_task(self._poll_loop(), name="tickler-sync")
        await self._emit(EventType.SCHEDULER_REHYDRATED, report.to_dict())
        await self._emit(EventType.SCHEDULER_START, {})
        logger.info("SchedulerService started")
        return report

    async def stop(self) -> None:
        """Stop heartbeat and polling; wait for in-flight fires to finish."""
        if not self._started:
            return
        self._started = False
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        self._poll_task = None
        if self._heartbeat is not None:
            await self._heartbeat.stop()
        await self._runner.stop()
        await self._emit(EventType.SCHEDULER_STOP, {})
        logger.info("SchedulerService stopped")

    # ── Operations ───────────────────────────────────────────────────────────

    async def schedule(
        self,
        payload: bytes | str,
        description: str,
        time_expression: str,
        task_type: str | None = None,
        now: datetime | None = None,
    ) -> ScheduleConfirmation:
        """
        Parse, persist, arm.

        Raises ParseError / PastTimeError before anything is written, and
        StoreError if the row cannot be persisted (then nothing is armed).
        """
        if not self._opened:
            raise SchedulerNotStartedError("schedule() called before start() or open()")
        reference = now or datetime.fromtimestamp(self._clock())
        resolved = self._parser.parse(time_expression, reference)

        if isinstance(payload, str):
            payload = payload.encode("utf-8")
        first = resolved.when.timestamp()
        intent = ScheduledIntent(
            description=description,
            kind=resolved.kind,
            payload=payload,
            fire_at=first if resolved.kind is ScheduleKind.ONE_OFF else None,
            recurrence_spec=resolved.recurrence_spec,
            task_type=task_type or self._config.scheduler.default_task_type,
            created_at=min(reference.timestamp(), first),
            next_run_time=first,
        )
        intent.validate()
        await self._store.insert(intent)
        if self._started:
            self._runner.arm(intent, self._on_fire)

        logger.info(f"Scheduled intent {intent.id} ({description!r}) {resolved.describe()}")
        await self._emit(
            EventType.INTENT_SCHEDULED,
            {
                "intent_id": intent.id,
                "description": description,
                "kind": intent.kind.value,
                "next_run_time": first,
            },
        )
        return ScheduleConfirmation(
            id=intent.id,
            description=description,
            kind=intent.kind,
            resolved_time=first,
            recurrence_spec=intent.recurrence_spec,
            resolved_text=resolved.describe(),
        )

    async def schedule_text(
        self,
        sentence: str,
        description: str | None = None,
        task_type: str | None = None,
        now: datetime | None = None,
    ) -> ScheduleConfirmation:
        """
        Schedule a whole reminder sentence: "remind me to call mom tomorrow at 5pm".

        The reminder text becomes the payload. Raises ParseError when the
        sentence holds no time and ValidationError when it holds nothing else.
        """
        if not self._opened:
            raise SchedulerNotStartedError("schedule_text() called before start() or open()")
        reference = now or datetime.fromtimestamp(self._clock())
        split = split_reminder(sentence, reference)
        return await self.schedule(
            split.text,
            description or split.text[:60],
            split.time_expression,
            task_type=task_type,
            now=reference,
        )

    async def cancel(self, intent_id: str) -> bool:
        """
        Disarm and deactivate. Idempotent: unknown or finished ids succeed.

        Returns True if an active intent was cancelled by this call.
        """
        self._runner.disarm(intent_id)
        changed = await self._store.cancel(intent_id)
        if changed:
            logger.info(f"Cancelled intent {intent_id}")
            await self._emit(EventType.INTENT_CANCELLED, {"intent_id": intent_id})
        else:
            logger.debug(f"Cancel of {intent_id}: not active, nothing to do")
        return changed

    async def list_active(self) -> list[ScheduledIntent]:
        """Active intents, soonest first."""
        return await self._store.list_active()

    async def status(self, limit: int = 5) -> SchedulerStatus:
        """Heartbeat age plus the next few fire times (read from the store)."""
        now = self._clock()
        last = await self._store.get_heartbeat()
        active = await self._store.list_active()
        hb = self._config.heartbeat
        return SchedulerStatus(
            last_heartbeat=last,
            heartbeat_age=None if last is None else now - last,
            stalled=is_stalled(last, now, hb.interval_seconds, hb.missed_intervals),
            active_count=len(active),
            upcoming=[
                UpcomingFire(id=i.id, description=i.description, next_run_time=i.next_run_time)
                for i in active[:limit]
            ],
        )

    async def history(self, intent_id: str, limit: int = 50) -> list[ExecutionRecord]:
        """Fire attempts recorded for an intent, newest first."""
        return await self._store.get_executions(intent_id, limit=limit)

    async def sync(self) -> int:
        """
        Reconcile runner timers with the store.

        Arms active intents nobody armed (written by another process) and
        disarms timers whose intent was deactivated elsewhere. Returns the
        number of newly armed intents.
        """
        now = self._clock()
        active = await self._store.list_active()
        active_ids = {i.id for i in active}
        armed = 0
        for intent in active:
            if self._runner.is_armed(intent.id) or self._runner.is_firing(intent.id):
                continue
            await self._bootstrapper.restore(intent, now)
            armed += 1
        for intent_id in self._runner.armed_ids():
            if intent_id in active_ids:
                continue
            # may have been scheduled after the snapshot above; re-check
            current = await self._store.get(intent_id)
            if current is None or not current.is_active:
                self._runner.disarm(intent_id)
        if armed:
            logger.info(f"Picked up {armed} intents from the store")
        return armed

    # ── Firing ───────────────────────────────────────────────────────────────

    async def _on_fire(self, firing: Firing) -> bool:
        """Run one occurrence. Returns True to keep a recurring intent armed."""
        try:
            intent = await self._store.get(firing.intent_id)
        except StoreError as e:
            logger.error(f"Cannot load intent {firing.intent_id} for firing: {e.message}")
            return firing.intent.is_recurring
        if intent is None or not intent.is_active:
            logger.info(f"Intent {firing.intent_id} no longer active; not firing")
            return False

        await self._emit(
            EventType.INTENT_FIRING,
            {"intent_id": intent.id, "scheduled_for": firing.scheduled_for},
        )
        result = await self._execute(intent, firing.scheduled_for)

        next_run = firing.next_due(result.finished_at) if intent.is_recurring else None
        try:
            recorded = await self._store.mark_fired(intent.id, next_run, result)
        except StoreError as e:
            # unrecorded: the intent re-fires on next start (at-least-once)
            logger.error(f"Could not record fire of {intent.id}: {e.message}")
            return intent.is_recurring
        if not recorded:
            logger.info(f"Intent {intent.id} was cancelled while firing")
            return False

        data = {
            "intent_id": intent.id,
            "status": result.status.value,
            "scheduled_for": result.scheduled_for,
            "next_run_time": next_run,
        }
        if result.status.ok:
            await self._emit(EventType.INTENT_FIRED, {**data, "summary": result.summary})
        else:
            await self._emit(EventType.INTENT_FAILED, {**data, "error": result.error})
        return intent.is_recurring

    async def _execute(self, intent: ScheduledIntent, scheduled_for: float) -> FireResult:
        logger.info(f"Firing intent {intent.id} ({intent.description!r}, type={intent.task_type})")
        try:
            summary = await self._invoke(intent)
        except ExecutionError as e:
            logger.warning(f"Intent {intent.id}: {e.message}")
            return FireResult(
                status=FireStatus.TIMEOUT if e.timed_out else FireStatus.FAILED,
                scheduled_for=scheduled_for,
                finished_at=self._clock(),
                error=e.message,
            )
        logger.info(f"Intent {intent.id} fired successfully")
        return FireResult(
            status=FireStatus.SUCCESS,
            scheduled_for=scheduled_for,
            finished_at=self._clock(),
            summary=summary,
        )

    async def _invoke(self, intent: ScheduledIntent) -> str:
        """Call the executor under the fire timeout. Raises ExecutionError."""
        try:
            summary = await asyncio.wait_for(
                self._executor(intent.task_type, intent.payload),
                timeout=self._fire_timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExecutionError(
                f"Executor timed out after {self._fire_timeout}s",
                intent_id=intent.id,
                timed_out=True,
            ) from e
        except Exception as e:
            raise ExecutionError(
                f"Executor failed: {e or type(e).__name__}", intent_id=intent.id
            ) from e
        return str(summary) if summary is not None else ""

    # ── Internals ────────────────────────────────────────────────────────────

    async def _poll_loop(self) -> None:
        while self._started:
            await asyncio.sleep(self._poll_interval)
            try:
                await self.sync()
            except StoreError as e:
                logger.warning(f"Store sync failed (non-fatal): {e.message}")

    async def _emit(self, event_type: str, data: dict) -> None:
        await self._bus.emit(Event(type=event_type, source="scheduler", data=data))

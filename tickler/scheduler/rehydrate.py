"""
RehydrationBootstrapper — rebuilds the runner's timers from the store.

Runs once at process start, before the service accepts new schedules.
Catch-up policy for occurrences missed while the process was down:

    fire_once (default)
        one-off past due   → fires immediately, once
        recurring past due → fires the single most recent missed occurrence
                             now, then continues with the true next one
    skip
        one-off past due   → recorded as skipped and deactivated
        recurring past due → advanced to the next future occurrence, no fire

Never flood-fires every missed period of a long outage.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum

from tickler.core.errors import RehydrationError, StoreError, ValidationError
from tickler.scheduler.intent import FireResult, FireStatus, ScheduledIntent
from tickler.scheduler.runner import JobRunner, OnFire
from tickler.scheduler.store import IntentStore
from tickler.scheduler.triggers import make_trigger

logger = logging.getLogger(__name__)


class CatchUpPolicy(str, Enum):
    FIRE_ONCE = "fire_once"
    SKIP = "skip"


@dataclass
class RehydrationReport:
    """What rehydration did, for logs and the scheduler:rehydrated event."""

    armed: int = 0
    caught_up: int = 0
    skipped: int = 0
    invalid: int = 0

    def to_dict(self) -> dict:
        return {
            "armed": self.armed,
            "caught_up": self.caught_up,
            "skipped": self.skipped,
            "invalid": self.invalid,
        }


class RehydrationBootstrapper:
    """Re-arms every active intent in the runner, applying the catch-up policy."""

    def __init__(
        self,
        store: IntentStore,
        runner: JobRunner,
        on_fire: OnFire,
        policy: CatchUpPolicy = CatchUpPolicy.FIRE_ONCE,
    ) -> None:
        self._store = store
        self._runner = runner
        self._on_fire = on_fire
        self._policy = policy

    async def run(self, now: float | None = None) -> RehydrationReport:
        """
        Arm all active intents.

        Raises RehydrationError if the store cannot be read: starting with an
        unknown prior state is worse than not starting.
        """
        now = time.time() if now is None else now
        try:
            intents = await self._store.list_active()
        except StoreError as e:
            raise RehydrationError(f"Cannot read active intents: {e.message}", e.details) from e

        report = RehydrationReport()
        for intent in intents:
            try:
                await self.restore(intent, now, report)
            except ValidationError as e:
                # a corrupt row must not block every other intent
                report.invalid += 1
                logger.error(f"Intent {intent.id} cannot be re-armed: {e.message}")
            except StoreError as e:
                raise RehydrationError(
                    f"Cannot restore intent {intent.id}: {e.message}", e.details
                ) from e

        logger.info(
            f"Rehydrated {report.armed} intents "
            f"({report.caught_up} caught up, {report.skipped} skipped, {report.invalid} invalid)"
        )
        return report

    async def restore(
        self, intent: ScheduledIntent, now: float, report: RehydrationReport | None = None
    ) -> None:
        """Arm one active intent, applying the catch-up policy if it is past due."""
        report = report if report is not None else RehydrationReport()
        trigger = make_trigger(intent)
        due = intent.next_run_time or intent.fire_at or now

        if due > now:
            self._runner.arm(intent, self._on_fire)
            report.armed += 1
            return

        if not intent.is_recurring:
            if self._policy is CatchUpPolicy.SKIP:
                await self._store.mark_fired(
                    intent.id,
                    None,
                    FireResult(
                        status=FireStatus.SKIPPED,
                        scheduled_for=due,
                        finished_at=now,
                        summary="missed while scheduler was down",
                    ),
                )
                report.skipped += 1
                logger.info(f"Skipped missed one-off intent {intent.id}")
                return
            logger.info(f"Catching up missed one-off intent {intent.id}")
            self._runner.arm(replace(intent, next_run_time=due), self._on_fire)
            report.armed += 1
            report.caught_up += 1
            return

        if self._policy is CatchUpPolicy.SKIP:
            upcoming = trigger.next_after(now)
            if upcoming is None:
                raise ValidationError("recurrence has no future occurrence", {"id": intent.id})
            await self._store.update_next_run(intent.id, upcoming)
            self._runner.arm(replace(intent, next_run_time=upcoming), self._on_fire)
            report.armed += 1
            report.skipped += 1
            logger.info(f"Skipped missed occurrences of intent {intent.id}")
            return

        latest = trigger.latest_at_or_before(now, since=due)
        missed = latest if latest is not None else due
        logger.info(f"Catching up intent {intent.id}: replaying occurrence {missed} once")
        self._runner.arm(replace(intent, next_run_time=missed), self._on_fire)
        report.armed += 1
        report.caught_up += 1

"""
Trigger implementations — compute fire times for an intent.

Recurrence specs are plain strings so they persist as-is:
    "0 9 * * 1"     cron (5 fields, or 6 with seconds last), local time
    "@every 1800"   fixed interval in seconds (fractions allowed)

Usage:
    trigger = make_trigger(intent)
    nxt = trigger.next_after(time.time())
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from datetime import datetime

from croniter import croniter

from tickler.core.errors import ValidationError
from tickler.scheduler.intent import ScheduledIntent, ScheduleKind

_INTERVAL_RE = re.compile(r"@every\s+(\d+(?:\.\d+)?)s?")


class Trigger(ABC):
    """Computes fire timestamps for one intent."""

    @abstractmethod
    def next_after(self, after: float) -> float | None:
        """
        Return the first fire time strictly after `after`.

        Returns None when the trigger has no further occurrences (one-off).
        """
        ...

    @abstractmethod
    def latest_at_or_before(self, moment: float, since: float) -> float | None:
        """
        Return the most recent occurrence <= `moment`, not earlier than `since`.

        `since` is a known occurrence (the cached next_run_time). Used by the
        catch-up policy to pick the single missed occurrence to replay.
        """
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """Human-readable description, e.g. 'cron(0 9 * * 1)'."""
        ...


class CronTrigger(Trigger):
    """
    Fires on a cron schedule evaluated in the process's local time.

    expression: 5-field cron string, e.g. "0 9 * * 1-5"
    """

    def __init__(self, expression: str) -> None:
        if not croniter.is_valid(expression):
            raise ValidationError(f"Invalid cron expression: {expression!r}")
        self._expression = expression

    def next_after(self, after: float) -> float | None:
        it = croniter(self._expression, datetime.fromtimestamp(after))
        return it.get_next(datetime).timestamp()

    def latest_at_or_before(self, moment: float, since: float) -> float | None:
        # get_prev is strict: start a second past `moment`, then walk back
        it = croniter(self._expression, datetime.fromtimestamp(moment + 1))
        prev = it.get_prev(datetime).timestamp()
        while prev > moment:
            prev = it.get_prev(datetime).timestamp()
        if prev < since:
            return None
        return prev

    @property
    def description(self) -> str:
        return f"cron({self._expression})"


class IntervalTrigger(Trigger):
    """Fires every N seconds, counted from the previous occurrence."""

    def __init__(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValidationError("Interval must be positive")
        self._seconds = seconds

    @property
    def seconds(self) -> float:
        return self._seconds

    def next_after(self, after: float) -> float | None:
        return after + self._seconds

    def latest_at_or_before(self, moment: float, since: float) -> float | None:
        if since > moment:
            return None
        steps = int((moment - since) // self._seconds)
        return since + steps * self._seconds

    @property
    def description(self) -> str:
        s = self._seconds
        if s >= 3600 and s % 3600 == 0:
            return f"every {int(s // 3600)}h"
        if s >= 60 and s % 60 == 0:
            return f"every {int(s // 60)}m"
        return f"every {s:g}s"


class OneshotTrigger(Trigger):
    """Fires once at a specific unix timestamp."""

    def __init__(self, at: float) -> None:
        self._at = at

    def next_after(self, after: float) -> float | None:
        return None

    def latest_at_or_before(self, moment: float, since: float) -> float | None:
        return self._at if self._at <= moment else None

    @property
    def description(self) -> str:
        dt = datetime.fromtimestamp(self._at).strftime("%Y-%m-%d %H:%M")
        return f"once at {dt}"


def parse_recurrence(spec: str) -> Trigger:
    """
    Build a Trigger from a recurrence spec string.

    Raises ValidationError for anything that is neither an interval nor a
    valid cron expression.
    """
    spec = spec.strip()
    m = _INTERVAL_RE.fullmatch(spec)
    if m:
        return IntervalTrigger(float(m.group(1)))
    return CronTrigger(spec)


def make_trigger(intent: ScheduledIntent) -> Trigger:
    """Build the Trigger for an intent from its kind and schedule fields."""
    if intent.kind is ScheduleKind.RECURRING:
        if not intent.recurrence_spec:
            raise ValidationError("recurring intent without recurrence_spec", {"id": intent.id})
        return parse_recurrence(intent.recurrence_spec)
    if intent.fire_at is None:
        raise ValidationError("one-off intent without fire_at", {"id": intent.id})
    return OneshotTrigger(intent.fire_at)

"""Tests for tickler/scheduler/triggers.py"""
from __future__ import annotations

from datetime import datetime

import pytest

from tickler.core.errors import ValidationError
from tickler.scheduler.intent import ScheduledIntent, ScheduleKind
from tickler.scheduler.triggers import (
    CronTrigger,
    IntervalTrigger,
    OneshotTrigger,
    make_trigger,
    parse_recurrence,
)


def ts(*args) -> float:
    return datetime(*args).timestamp()


# ── CronTrigger ──────────────────────────────────────────────────────────────

class TestCronTrigger:
    def test_next_after_is_strictly_later(self):
        trigger = CronTrigger("0 9 * * *")
        at_nine = ts(2024, 1, 1, 9, 0)
        assert trigger.next_after(at_nine) == ts(2024, 1, 2, 9, 0)

    def test_next_after_weekday(self):
        # 2024-01-01 is a Monday
        trigger = CronTrigger("0 9 * * 1")
        assert trigger.next_after(ts(2024, 1, 1, 10, 0)) == ts(2024, 1, 8, 9, 0)

    def test_invalid_expression_raises(self):
        with pytest.raises(ValidationError):
            CronTrigger("not a cron")

    def test_latest_at_or_before_picks_most_recent(self):
        trigger = CronTrigger("0 * * * *")
        since = ts(2024, 1, 1, 6, 0)
        latest = trigger.latest_at_or_before(ts(2024, 1, 1, 9, 30), since=since)
        assert latest == ts(2024, 1, 1, 9, 0)

    def test_latest_at_or_before_includes_exact_moment(self):
        trigger = CronTrigger("0 * * * *")
        moment = ts(2024, 1, 1, 9, 0)
        assert trigger.latest_at_or_before(moment, since=moment) == moment

    def test_latest_at_or_before_none_when_before_since(self):
        trigger = CronTrigger("0 9 * * *")
        assert trigger.latest_at_or_before(ts(2024, 1, 1, 10, 0), since=ts(2024, 1, 2, 9, 0)) is None

    def test_description_contains_expression(self):
        assert "0 9 * * 1-5" in CronTrigger("0 9 * * 1-5").description


# ── IntervalTrigger ──────────────────────────────────────────────────────────

class TestIntervalTrigger:
    def test_next_after_adds_interval(self):
        assert IntervalTrigger(300).next_after(1_000_000) == 1_000_300

    def test_fractional_seconds(self):
        assert IntervalTrigger(0.5).next_after(10.0) == 10.5

    def test_non_positive_rejected(self):
        with pytest.raises(ValidationError):
            IntervalTrigger(0)

    def test_latest_at_or_before_aligns_to_since(self):
        trigger = IntervalTrigger(60)
        assert trigger.latest_at_or_before(1_000 + 250, since=1_000) == 1_240

    def test_description(self):
        assert IntervalTrigger(3600).description == "every 1h"
        assert IntervalTrigger(1800).description == "every 30m"
        assert IntervalTrigger(45).description == "every 45s"


# ── OneshotTrigger ───────────────────────────────────────────────────────────

class TestOneshotTrigger:
    def test_has_no_next(self):
        assert OneshotTrigger(1_000).next_after(0) is None

    def test_latest_only_once_due(self):
        trigger = OneshotTrigger(1_000)
        assert trigger.latest_at_or_before(999, since=0) is None
        assert trigger.latest_at_or_before(1_500, since=0) == 1_000


# ── Factories ────────────────────────────────────────────────────────────────

class TestFactories:
    def test_parse_interval(self):
        trigger = parse_recurrence("@every 1800")
        assert isinstance(trigger, IntervalTrigger)
        assert trigger.seconds == 1800

    def test_parse_cron(self):
        assert isinstance(parse_recurrence("*/5 * * * *"), CronTrigger)

    def test_parse_garbage_raises(self):
        with pytest.raises(ValidationError):
            parse_recurrence("@every soon")

    def test_make_trigger_one_off(self):
        intent = ScheduledIntent(
            description="x", kind=ScheduleKind.ONE_OFF, payload=b"", fire_at=1_000.0
        )
        assert isinstance(make_trigger(intent), OneshotTrigger)

    def test_make_trigger_recurring_needs_spec(self):
        intent = ScheduledIntent(description="x", kind=ScheduleKind.RECURRING, payload=b"")
        with pytest.raises(ValidationError):
            make_trigger(intent)

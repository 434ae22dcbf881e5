"""Tests for tickler/scheduler/parser.py"""
from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from tickler.core.errors import ParseError, PastTimeError, ValidationError
from tickler.scheduler.intent import ScheduleKind
from tickler.scheduler.parser import NaturalLanguageParser, normalise, split_reminder


@pytest.fixture
def parser():
    return NaturalLanguageParser()


# ── Normalisation ────────────────────────────────────────────────────────────

class TestNormalise:
    def test_am_pm_to_24h(self):
        assert normalise("Tomorrow at 8am") == "tomorrow 08:00"
        assert normalise("at 3:30 PM") == "15:30"
        assert normalise("at 12am") == "00:00"

    def test_number_words(self):
        assert normalise("in two hours") == "in 2 hours"

    def test_noon_and_midnight(self):
        assert normalise("tomorrow at noon") == "tomorrow 12:00"
        assert normalise("midnight") == "00:00"

    def test_tonight(self):
        assert normalise("tonight") == "today 20:00"

    def test_half_an_hour(self):
        assert normalise("in half an hour") == "in 30 minutes"


# ── One-off ──────────────────────────────────────────────────────────────────

class TestOneOff:
    def test_tomorrow_at_8am(self, parser, reference):
        result = parser.parse("tomorrow at 8am", reference)
        assert result.kind is ScheduleKind.ONE_OFF
        assert result.fire_at == datetime(2024, 1, 2, 8, 0)
        assert result.recurrence_spec is None

    def test_deterministic(self, parser, reference):
        a = parser.parse("tomorrow at 8am", reference)
        b = parser.parse("tomorrow at 8am", reference)
        assert a == b

    def test_in_one_hour(self, parser, reference):
        result = parser.parse("in 1 hour", reference)
        assert result.fire_at == reference + timedelta(hours=1)

    def test_in_two_hours_words(self, parser, reference):
        result = parser.parse("in two hours", reference)
        assert result.fire_at == reference + timedelta(hours=2)

    def test_compound_relative(self, parser, reference):
        result = parser.parse("in 5 minutes and 30 seconds", reference)
        assert result.fire_at == reference + timedelta(seconds=330)

    def test_in_half_an_hour(self, parser, reference):
        result = parser.parse("in half an hour", reference)
        assert result.fire_at == reference + timedelta(minutes=30)

    def test_bare_clock_later_today(self, parser, reference):
        assert parser.parse("at 3pm", reference).fire_at == datetime(2024, 1, 1, 15, 0)

    def test_bare_clock_already_passed_rolls_to_tomorrow(self, parser, reference):
        assert parser.parse("at 9am", reference).fire_at == datetime(2024, 1, 2, 9, 0)

    def test_tonight(self, parser, reference):
        assert parser.parse("tonight", reference).fire_at == datetime(2024, 1, 1, 20, 0)

    def test_day_after_tomorrow(self, parser, reference):
        result = parser.parse("day after tomorrow at 7:15pm", reference)
        assert result.fire_at == datetime(2024, 1, 3, 19, 15)

    def test_absolute_date(self, parser, reference):
        result = parser.parse("2024-03-15 14:00", reference)
        assert result.fire_at == datetime(2024, 3, 15, 14, 0)

    def test_describe_mentions_time(self, parser, reference):
        assert "2024-01-02 08:00" in parser.parse("tomorrow at 8am", reference).describe()


# ── Recurring ────────────────────────────────────────────────────────────────

class TestRecurring:
    @pytest.mark.parametrize(
        "expression, spec",
        [
            ("every monday at 9am", "0 9 * * 1"),
            ("every day at 7:30pm", "30 19 * * *"),
            ("daily", "0 9 * * *"),
            ("every weekday at 8am", "0 8 * * 1-5"),
            ("every weekend at 10am", "0 10 * * 0,6"),
            ("every monday and wednesday at 6pm", "0 18 * * 1,3"),
            ("every month on the 15th", "0 9 15 * *"),
            ("weekly", "0 9 * * 1"),
            ("every hour", "0 * * * *"),
            ("every 30 minutes", "*/30 * * * *"),
            ("every 6 hours", "0 */6 * * *"),
            ("every 90 minutes", "@every 5400"),
            ("every 2 weeks", "@every 1209600"),
            ("0 9 * * 1-5", "0 9 * * 1-5"),
            ("@every 3600", "@every 3600"),
        ],
    )
    def test_recurrence_spec(self, parser, reference, expression, spec):
        result = parser.parse(expression, reference)
        assert result.kind is ScheduleKind.RECURRING
        assert result.recurrence_spec == spec
        assert result.fire_at is None

    def test_first_run_is_next_occurrence(self, parser, reference):
        # reference is Monday 10:00, so this week's 9am has passed
        result = parser.parse("every monday at 9am", reference)
        assert result.first_run_after == datetime(2024, 1, 8, 9, 0)
        assert result.when == result.first_run_after

    def test_interval_first_run(self, parser, reference):
        result = parser.parse("every 90 minutes", reference)
        assert result.first_run_after == reference + timedelta(minutes=90)

    def test_describe_recurring(self, parser, reference):
        assert "cron(0 9 * * 1)" in parser.parse("every monday at 9am", reference).describe()


# ── Errors ───────────────────────────────────────────────────────────────────

class TestErrors:
    def test_gibberish_raises_parse_error(self, parser, reference):
        with pytest.raises(ParseError) as exc:
            parser.parse("purple elephants", reference)
        assert exc.value.expression == "purple elephants"

    def test_empty_raises_parse_error(self, parser, reference):
        with pytest.raises(ParseError):
            parser.parse("   ", reference)

    def test_past_time_raises(self, parser, reference):
        with pytest.raises(PastTimeError) as exc:
            parser.parse("today at 9am", reference)
        assert exc.value.resolved == datetime(2024, 1, 1, 9, 0).timestamp()

    def test_past_absolute_date_raises(self, parser, reference):
        with pytest.raises(PastTimeError):
            parser.parse("2023-06-01 10:00", reference)

    def test_past_time_is_a_parse_error(self, parser, reference):
        with pytest.raises(ParseError):
            parser.parse("today at 9am", reference)

    def test_within_grace_is_accepted(self, reference):
        parser = NaturalLanguageParser(grace_seconds=120)
        result = parser.parse("today at 9:59am", reference)
        assert result.fire_at == datetime(2024, 1, 1, 9, 59)

    def test_invalid_interval_spec(self, parser, reference):
        with pytest.raises(ParseError):
            parser.parse("@every soon", reference)

    def test_unsupported_recurrence(self, parser, reference):
        with pytest.raises(ParseError):
            parser.parse("every blue moon", reference)

    @pytest.mark.parametrize("expression", ["in 99999999 weeks", "every 99999999 weeks"])
    def test_out_of_range_raises_parse_error(self, parser, reference, expression):
        with pytest.raises(ParseError) as exc:
            parser.parse(expression, reference)
        assert exc.value.expression == expression


# ── Reminder sentences ───────────────────────────────────────────────────────

class TestSplitReminder:
    def test_text_before_time(self, reference):
        split = split_reminder("remind me to call mom tomorrow at 5pm", reference)
        assert split.time_expression == "tomorrow at 5pm"
        assert split.text == "call mom"

    def test_time_before_text(self, reference):
        split = split_reminder("Tomorrow at 10am, pick up laundry", reference)
        assert split.time_expression == "Tomorrow at 10am"
        assert split.text == "pick up laundry"

    def test_recurrence_in_the_middle(self, parser, reference):
        split = split_reminder("remind me every monday at 9am to review the week", reference)
        assert split.time_expression == "every monday at 9am"
        assert split.text == "review the week"
        assert parser.parse(split.time_expression, reference).recurrence_spec == "0 9 * * 1"

    def test_relative_offset_first(self, parser, reference):
        split = split_reminder("in two hours take out the bins", reference)
        assert split.time_expression == "in two hours"
        assert split.text == "take out the bins"
        assert parser.parse(split.time_expression, reference).fire_at == reference + timedelta(hours=2)

    def test_clock_time_before_text(self, reference):
        split = split_reminder("remind me at 5pm to stretch", reference)
        assert split.time_expression == "at 5pm"
        assert split.text == "stretch"

    def test_weekday(self, reference):
        split = split_reminder("schedule dentist call next tuesday at 3pm", reference)
        assert split.time_expression == "next tuesday at 3pm"
        assert split.text == "dentist call"

    def test_only_a_time_raises(self, reference):
        with pytest.raises(ValidationError):
            split_reminder("remind me tomorrow at 5pm", reference)

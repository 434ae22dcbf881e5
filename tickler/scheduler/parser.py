"""
Time expression parsing — turns "tomorrow at noon", "in two hours" or
"every Monday at 9am" into a concrete schedule.

Parsing is pure with respect to the reference time passed in: nothing here
reads the wall clock, so the same (expression, reference) pair always yields
the same ResolvedSchedule.

Pipeline:
    1. normalise   — lowercase, number words to digits, 3pm/noon to 24h clock,
                     drop filler words ("at", "on")
    2. recurrence  — rule table mapping "every ..." phrases to a cron or
                     "@every N" interval spec (see triggers.py)
    3. one-off     — fast paths for "in N units", today/tomorrow and bare
                     clock times; everything else goes to dateparser
    4. past check  — one-offs earlier than reference - grace are rejected

split_reminder() handles whole sentences ("remind me to call mom tomorrow
at 5pm") by cutting the time phrase out before it is parsed.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta

import dateparser
from croniter import croniter
from dateparser.search import search_dates

from tickler.core.errors import ParseError, PastTimeError, ValidationError
from tickler.scheduler.intent import ScheduleKind
from tickler.scheduler.triggers import IntervalTrigger, parse_recurrence

logger = logging.getLogger(__name__)

DEFAULT_GRACE_SECONDS = 5.0


@dataclass(frozen=True)
class ResolvedSchedule:
    """Result of parsing: either a one-off fire time or a recurrence."""

    kind: ScheduleKind
    expression: str
    fire_at: datetime | None = None
    recurrence_spec: str | None = None
    first_run_after: datetime | None = None

    @property
    def when(self) -> datetime:
        """The first moment this schedule fires."""
        when = self.fire_at if self.kind is ScheduleKind.ONE_OFF else self.first_run_after
        if when is None:
            raise ValidationError(f"Schedule {self.expression!r} has no fire time")
        return when

    def describe(self) -> str:
        stamp = self.when.strftime("%Y-%m-%d %H:%M:%S")
        if self.kind is ScheduleKind.ONE_OFF:
            return f"once at {stamp}"
        trigger = parse_recurrence(self.recurrence_spec or "")
        return f"{trigger.description}, first at {stamp}"


class TimeExpressionParser(ABC):
    """Turns a free-form time phrase into a ResolvedSchedule."""

    @abstractmethod
    def parse(self, expression: str, reference: datetime) -> ResolvedSchedule:
        """
        Resolve `expression` against `reference`.

        Raises:
            ParseError:    nothing interpretable as a date/time.
            PastTimeError: a one-off resolved before reference - grace.
        """
        ...


# ━━━ Normalisation tables ━━━

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5, "six": 6,
    "seven": 7, "eight": 8, "nine": 9, "ten": 10, "eleven": 11,
    "twelve": 12, "fifteen": 15, "twenty": 20, "thirty": 30,
    "forty five": 45, "forty-five": 45, "forty": 40, "fifty": 50,
    "sixty": 60, "ninety": 90,
}

_PART_OF_DAY = {
    "morning": "09:00",
    "afternoon": "15:00",
    "evening": "18:00",
    "night": "21:00",
}

_WEEKDAYS = {
    "sunday": 0, "sun": 0,
    "monday": 1, "mon": 1,
    "tuesday": 2, "tue": 2, "tues": 2,
    "wednesday": 3, "wed": 3,
    "thursday": 4, "thu": 4, "thurs": 4,
    "friday": 5, "fri": 5,
    "saturday": 6, "sat": 6,
}

_UNIT_SECONDS = {
    "second": 1, "sec": 1, "minute": 60, "min": 60,
    "hour": 3600, "hr": 3600, "day": 86400, "week": 604800,
}

_CRON_RE = re.compile(r"[\d*/,\-?LW#]+(\s+[\d*/,\-?LW#]+){4,5}")
_CLOCK_RE = re.compile(r"\b(\d{1,2}):(\d{2})\b")
_AMPM_RE = re.compile(r"\b(\d{1,2})(?::(\d{2}))?\s*(am|pm|a\.m\.?|p\.m\.?)(?=\W|$)")
_RELATIVE_RE = re.compile(
    r"in\s+(\d+(?:\.\d+)?)\s*(second|sec|minute|min|hour|hr|day|week)s?"
    r"(?:\s+and\s+(\d+)\s*(second|sec|minute|min|hour|hr)s?)?"
)
_DAY_WORD_RE = re.compile(r"(today|tonight|tomorrow|day after tomorrow)(?:\s+(\d{1,2}):(\d{2}))?")
_TIME_ONLY_RE = re.compile(r"(\d{1,2}):(\d{2})")
_EVERY_N_RE = re.compile(r"every\s+(\d+(?:\.\d+)?)\s*(second|sec|minute|min|hour|hr|day|week)s?\b")
_EVERY_UNIT_RE = re.compile(r"every\s+(second|minute|hour)\b")
_MONTH_DAY_RE = re.compile(r"(?:the\s+)?(\d{1,2})(?:st|nd|rd|th)?\b")


def normalise(expression: str) -> str:
    """Canonical lowercase form of a time phrase (see module docstring)."""
    text = expression.strip().lower()
    text = re.sub(r"[!?.,;]+$", "", text)
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\bhalf an? hour\b", "30 minutes", text)
    text = re.sub(r"\ban? (second|minute|hour|day|week)\b", r"1 \1", text)
    for word, value in sorted(_NUMBER_WORDS.items(), key=lambda kv: -len(kv[0])):
        text = re.sub(rf"\b{word}\b", str(value), text)
    text = re.sub(r"\bnoon\b|\bmidday\b", "12:00", text)
    text = re.sub(r"\bmidnight\b", "00:00", text)
    text = _AMPM_RE.sub(_to_24h, text)
    text = re.sub(r"\btonight\b", "today 20:00", text)
    text = re.sub(r"\bthis (morning|afternoon|evening)\b", r"today \1", text)
    for part, clock in _PART_OF_DAY.items():
        text = re.sub(rf"\b{part}\b", clock, text)
    text = re.sub(r"\b(?:next|this|coming)\s+(?=(?:mon|tue|wed|thu|fri|sat|sun))", "", text)
    text = re.sub(r"\b(?:at|on)\b", " ", text)
    text = re.sub(r"\s+", " ", text).strip()
    return text


def _to_24h(m: re.Match) -> str:
    hour = int(m.group(1)) % 12
    minute = int(m.group(2) or 0)
    if m.group(3).startswith("p"):
        hour += 12
    return f"{hour:02d}:{minute:02d}"


def _clock(text: str, default: tuple[int, int] | None) -> tuple[int, int] | None:
    """Extract an HH:MM clock time from normalised text."""
    m = _CLOCK_RE.search(text)
    if not m:
        return default
    hour, minute = int(m.group(1)), int(m.group(2))
    if hour > 23 or minute > 59:
        return None
    return hour, minute


class NaturalLanguageParser(TimeExpressionParser):
    """
    Default parser: rule-based recurrences plus dateparser for one-offs.

    Args:
        grace_seconds: how far before `reference` a one-off may resolve
                       before it is rejected as in the past.
        default_time:  clock time used by day-level recurrences that do not
                       name one ("every monday").
        languages:     dateparser languages for one-off phrases.
    """

    def __init__(
        self,
        grace_seconds: float = DEFAULT_GRACE_SECONDS,
        default_time: tuple[int, int] = (9, 0),
        languages: list[str] | None = None,
    ) -> None:
        self._grace = timedelta(seconds=grace_seconds)
        self._default_time = default_time
        self._languages = languages or ["en"]

    def parse(self, expression: str, reference: datetime) -> ResolvedSchedule:
        raw = (expression or "").strip()
        if not raw:
            raise ParseError("Empty time expression", expression=raw)

        try:
            spec = self._recurrence_spec(raw)
            if spec is not None:
                return self._resolve_recurring(raw, spec, reference)
            fire_at = self._one_off(normalise(raw), reference)
        except OverflowError as e:
            raise ParseError(f"Time expression is out of range: {raw!r}", expression=raw) from e
        if fire_at is None:
            raise ParseError(f"Could not understand the time expression: {raw!r}", expression=raw)
        if fire_at < reference - self._grace:
            raise PastTimeError(
                f"The time {fire_at:%Y-%m-%d %H:%M:%S} is in the past",
                expression=raw,
                resolved=fire_at.timestamp(),
            )
        logger.debug(f"Parsed {raw!r} as one-off at {fire_at.isoformat()}")
        return ResolvedSchedule(kind=ScheduleKind.ONE_OFF, expression=raw, fire_at=fire_at)

    # ── Recurrence ───────────────────────────────────────────────────────────

    def _recurrence_spec(self, raw: str) -> str | None:
        """Map a recurrence phrase to a spec, or None if it is not one."""
        if raw.startswith("@") or _CRON_RE.fullmatch(raw):
            try:
                parse_recurrence(raw)
            except ValidationError as e:
                raise ParseError(f"Invalid recurrence spec: {raw!r}", expression=raw) from e
            return raw

        text = normalise(raw)
        text = re.sub(r"^(?:repeat(?:ing)?|recurring)\s+", "", text)
        aliases = {"hourly": "every hour", "daily": "every day", "nightly": "every day 21:00",
                   "weekly": "every week", "monthly": "every month"}
        for alias, replacement in aliases.items():
            text = re.sub(rf"\b{alias}\b", replacement, text)
        if not text.startswith("every ") and " every " not in f" {text}":
            return None
        text = text[text.index("every"):]

        m = _EVERY_N_RE.match(text)
        if m:
            return self._every_n(float(m.group(1)), m.group(2), text)

        m = _EVERY_UNIT_RE.match(text)
        if m:
            return {"second": "@every 1", "minute": "* * * * *", "hour": "0 * * * *"}[m.group(1)]

        rest = text[len("every "):]
        clock = _clock(rest, self._default_time)
        if clock is None:
            raise ParseError(f"Invalid time of day in {raw!r}", expression=raw)
        hour, minute = clock

        if re.match(r"(day|night)\b", rest) or _CLOCK_RE.match(rest):
            return f"{minute} {hour} * * *"
        if re.match(r"weekdays?\b", rest):
            return f"{minute} {hour} * * 1-5"
        if re.match(r"weekends?\b", rest):
            return f"{minute} {hour} * * 0,6"
        if re.match(r"week\b", rest):
            return f"{minute} {hour} * * 1"
        if re.match(r"month\b", rest):
            day_text = _CLOCK_RE.sub("", rest[len("month"):])
            dm = _MONTH_DAY_RE.search(day_text)
            day = int(dm.group(1)) if dm else 1
            if not 1 <= day <= 31:
                raise ParseError(f"Invalid day of month in {raw!r}", expression=raw)
            return f"{minute} {hour} {day} * *"

        days = self._weekday_list(rest)
        if days:
            return f"{minute} {hour} * * {','.join(str(d) for d in days)}"
        raise ParseError(f"Unsupported recurrence: {raw!r}", expression=raw)

    def _every_n(self, n: float, unit: str, text: str) -> str:
        if n <= 0:
            raise ParseError(f"Interval must be positive: {text!r}", expression=text)
        unit = {"sec": "second", "min": "minute", "hr": "hour"}.get(unit, unit)
        whole = n == int(n)
        if unit == "minute" and whole and 0 < n < 60 and 60 % n == 0:
            return "* * * * *" if n == 1 else f"*/{int(n)} * * * *"
        if unit == "hour" and whole and 0 < n < 24 and 24 % n == 0:
            return "0 * * * *" if n == 1 else f"0 */{int(n)} * * *"
        if unit in ("day", "week") and n == 1:
            hour, minute = _clock(text, self._default_time) or self._default_time
            return f"{minute} {hour} * * *" if unit == "day" else f"{minute} {hour} * * 1"
        seconds = n * _UNIT_SECONDS[unit]
        if seconds == int(seconds):
            return f"@every {int(seconds)}"
        return f"@every {seconds:.6f}".rstrip("0")

    @staticmethod
    def _weekday_list(rest: str) -> list[int]:
        head = _CLOCK_RE.split(rest)[0]
        tokens = re.split(r"[\s,]+|\band\b", head)
        days: list[int] = []
        for token in tokens:
            token = token.strip()
            if not token or token in ("and", "&"):
                continue
            day = _WEEKDAYS.get(token, _WEEKDAYS.get(token.rstrip("s")))
            if day is None:
                return []
            if day not in days:
                days.append(day)
        return sorted(days)

    def _resolve_recurring(self, raw: str, spec: str, reference: datetime) -> ResolvedSchedule:
        trigger = parse_recurrence(spec)
        if isinstance(trigger, IntervalTrigger):
            seconds = trigger.seconds
            first = reference + timedelta(seconds=seconds)
            text = normalise(raw)
            clock = _clock(text, None)
            if clock is not None and seconds >= 86400:
                first = self._next_clock(reference, *clock)
        else:
            first = croniter(spec, reference).get_next(datetime)
        logger.debug(f"Parsed {raw!r} as recurrence {spec!r}, first at {first.isoformat()}")
        return ResolvedSchedule(
            kind=ScheduleKind.RECURRING,
            expression=raw,
            recurrence_spec=spec,
            first_run_after=first,
        )

    # ── One-off ──────────────────────────────────────────────────────────────

    def _one_off(self, text: str, reference: datetime) -> datetime | None:
        m = _RELATIVE_RE.fullmatch(text)
        if m:
            delta = timedelta(seconds=float(m.group(1)) * _UNIT_SECONDS[m.group(2)])
            if m.group(3):
                delta += timedelta(seconds=int(m.group(3)) * _UNIT_SECONDS[m.group(4)])
            return reference + delta

        m = _DAY_WORD_RE.fullmatch(text)
        if m:
            offset = {"today": 0, "tonight": 0, "tomorrow": 1, "day after tomorrow": 2}[m.group(1)]
            day = reference + timedelta(days=offset)
            if m.group(2) is None:
                return day
            return self._at_clock(day, int(m.group(2)), int(m.group(3)))

        m = _TIME_ONLY_RE.fullmatch(text)
        if m:
            return self._next_clock(reference, int(m.group(1)), int(m.group(2)))

        return self._dateparser(text, reference)

    def _dateparser(self, text: str, reference: datetime) -> datetime | None:
        base = reference.replace(tzinfo=None)
        parsed = dateparser.parse(
            text,
            languages=self._languages,
            settings={
                "RELATIVE_BASE": base,
                "PREFER_DATES_FROM": "future",
                "RETURN_AS_TIMEZONE_AWARE": False,
            },
        )
        if parsed is None:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.replace(tzinfo=None)
        return parsed.replace(tzinfo=reference.tzinfo)

    @staticmethod
    def _at_clock(day: datetime, hour: int, minute: int) -> datetime | None:
        if hour > 23 or minute > 59:
            return None
        return day.replace(hour=hour, minute=minute, second=0, microsecond=0)

    def _next_clock(self, reference: datetime, hour: int, minute: int) -> datetime | None:
        """Next occurrence of HH:MM strictly after `reference`."""
        candidate = self._at_clock(reference, hour, minute)
        if candidate is not None and candidate <= reference:
            candidate += timedelta(days=1)
        return candidate


# ━━━ Reminder sentences ━━━

_NUM = "|".join(sorted(map(re.escape, _NUMBER_WORDS), key=len, reverse=True))
_NUM = rf"(?:\d+(?:\.\d+)?|an?|{_NUM})"
_UNIT = r"(?:second|sec|minute|min|hour|hr|day|week)s?"
_CLOCK_WORD = r"(?:\d{1,2}(?::\d{2})?\s*(?:am|pm|a\.m\.|p\.m\.)|\d{1,2}:\d{2}|noon|midday|midnight)"
_WEEKDAY_WORD = "|".join(sorted(_WEEKDAYS, key=len, reverse=True))
_RECUR_TOKEN = (
    rf"(?:{_CLOCK_WORD}|{_NUM}|\d{{1,2}}(?:st|nd|rd|th)|(?:{_WEEKDAY_WORD})s?"
    r"|(?:second|sec|minute|min|hour|hr|day|week|month|weekday|weekend)s?"
    r"|morning|afternoon|evening|night|the|and|at|on|of|&)"
)

# tried in order; the first pattern that matches anywhere wins
_TIME_PHRASES = [
    re.compile(
        rf"\b(?:every|hourly|daily|nightly|weekly|monthly)\b(?:[\s,]+{_RECUR_TOKEN}(?!\w))*",
        re.IGNORECASE,
    ),
    re.compile(
        rf"\bin\s+(?:half\s+an?\s+hour|{_NUM}\s*{_UNIT}(?:\s+and\s+{_NUM}\s*{_UNIT})?)(?!\w)",
        re.IGNORECASE,
    ),
    re.compile(
        rf"(?:\bat\s+{_CLOCK_WORD}\s+)?\b(?:day after tomorrow|today|tonight|tomorrow)"
        rf"(?:\s+(?:at\s+)?(?:{_CLOCK_WORD}|morning|afternoon|evening|night))?(?!\w)",
        re.IGNORECASE,
    ),
    re.compile(
        rf"(?:\bat\s+{_CLOCK_WORD}\s+)?\b(?:(?:next|this|coming)\s+)?"
        r"(?:monday|tuesday|wednesday|thursday|friday|saturday|sunday)"
        rf"(?:\s+(?:at\s+)?(?:{_CLOCK_WORD}|morning|afternoon|evening|night))?(?!\w)",
        re.IGNORECASE,
    ),
    re.compile(rf"\bat\s+{_CLOCK_WORD}(?!\w)", re.IGNORECASE),
]
_TRAILING_FILLER_RE = re.compile(r"(?:[\s,]+(?:and|the|at|on|of|&|an?))+$", re.IGNORECASE)
_LEADING_FILLER_RE = re.compile(r"^(?:remind me(?:\s+to)?|schedule|to|that)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ReminderText:
    """A reminder sentence split into its time phrase and what to do."""

    time_expression: str
    text: str


def split_reminder(
    sentence: str, reference: datetime, languages: list[str] | None = None
) -> ReminderText:
    """
    Split "remind me to call mom tomorrow at 5pm" into
    ("tomorrow at 5pm", "call mom").

    The time phrase may come before or after the reminder text. Recurrences,
    relative offsets, day words and clock times are located by rule; anything
    else is left to dateparser's search. The returned time_expression still
    has to go through a parser.

    Raises:
        ParseError:      no time phrase in the sentence.
        ValidationError: nothing left once the time phrase is removed.
    """
    body = _strip_filler(sentence or "")
    span = _find_time_phrase(body, reference, languages or ["en"])
    if span is None:
        raise ParseError(f"No time found in {sentence!r}", expression=sentence)
    start, end = span
    phrase = body[start:end].strip(" ,")
    text = _strip_filler(f"{body[:start]} {body[end:]}")
    if not text:
        raise ValidationError(f"No reminder text in {sentence!r}", {"sentence": sentence})
    logger.debug(f"Split {sentence!r} into time {phrase!r} and text {text!r}")
    return ReminderText(time_expression=phrase, text=text)


def _find_time_phrase(
    body: str, reference: datetime, languages: list[str]
) -> tuple[int, int] | None:
    for pattern in _TIME_PHRASES:
        m = pattern.search(body)
        if m:
            trimmed = _TRAILING_FILLER_RE.sub("", m.group(0))
            return m.start(), m.start() + len(trimmed)

    found = search_dates(
        body,
        languages=languages,
        settings={
            "RELATIVE_BASE": reference.replace(tzinfo=None),
            "PREFER_DATES_FROM": "future",
            "RETURN_AS_TIMEZONE_AWARE": False,
        },
    )
    if not found:
        return None
    phrase = found[0][0]
    start = body.find(phrase)
    if start < 0:
        return None
    return start, start + len(phrase)


def _strip_filler(text: str) -> str:
    text = re.sub(r"\s+", " ", text).strip(" ,;:-")
    while True:
        stripped = _LEADING_FILLER_RE.sub("", text).strip(" ,;:-")
        if stripped == text:
            return text
        text = stripped

"""
Date and time helpers for the practice-management API.

The API speaks naive local wall-clock time:
- calendar dates as "YYYY-MM-DD" (query boundaries, never timestamps)
- appointment times as "YYYY-MM-DD HH:mm:ss"

Relative phrases ("next week", "Tuesday", "in 2 weeks") are resolved
here, in code, against an explicit anchor date. For new bookings the
anchor is today; for reschedules it is the existing appointment's date,
except that "today" and "tomorrow" still mean the real today.
"""

import re
from datetime import date, datetime, time, timedelta
from typing import Optional, Union

from app.core.scheduling.errors import ValidationError

DATE_FORMAT = "%Y-%m-%d"
DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_NUMBER_WORDS = {
    "a": 1,
    "an": 1,
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
}

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_COUNT = r"(\d+|a|an|one|two|three|four|five|six)"
_IN_UNITS = re.compile(rf"\b(?:in|after)\s+{_COUNT}\s+(day|week)s?\b")
_UNITS_LATER = re.compile(rf"\b{_COUNT}\s+(day|week)s?\s+(?:later|out|from then|after that)\b")
_WEEKDAY = re.compile(r"\b(next|this|on)?\s*(monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b")


def format_date(value: date) -> str:
    """Format a calendar date as YYYY-MM-DD."""
    return value.strftime(DATE_FORMAT)


def format_datetime(value: datetime) -> str:
    """Format a datetime as YYYY-MM-DD HH:mm:ss."""
    return value.strftime(DATETIME_FORMAT)


def parse_datetime(value: str) -> datetime:
    """Parse an API datetime ("YYYY-MM-DD HH:mm:ss" or ISO "T" form)."""
    text = value.strip().replace("T", " ")
    # Drop fractional seconds / offsets the API occasionally appends
    text = text[:19]
    try:
        return datetime.strptime(text, DATETIME_FORMAT)
    except ValueError:
        try:
            return datetime.strptime(text[:16], "%Y-%m-%d %H:%M")
        except ValueError as e:
            raise ValidationError(
                field="date_time",
                question="Could you tell me the date and time again?",
                message=f"Unparseable datetime: {value!r}",
            ) from e


def as_calendar_date(value: Union[date, str]) -> date:
    """Coerce a query boundary to a calendar date.

    Query boundaries must be calendar dates. A datetime, or a string with
    a time component, is a caller error.
    """
    if isinstance(value, datetime):
        raise ValidationError(
            field="date",
            question="Which day would you like?",
            message=f"Expected a calendar date, got timestamp {value!r}",
        )
    if isinstance(value, date):
        return value
    if isinstance(value, str) and _DATE_ONLY.match(value.strip()):
        return datetime.strptime(value.strip(), DATE_FORMAT).date()
    raise ValidationError(
        field="date",
        question="Which day would you like?",
        message=f"Expected YYYY-MM-DD, got {value!r}",
    )


def parse_clock(value: str) -> time:
    """Parse "HH:MM" from office-hours configuration."""
    hours, minutes = value.split(":")[:2]
    return time(int(hours), int(minutes))


def weekday_name(value: date) -> str:
    """Lower-case weekday name used as the office-hours key."""
    return WEEKDAYS[value.weekday()]


def daterange(start: date, end: date):
    """Yield each calendar date from start to end inclusive."""
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


def _count(token: str) -> int:
    """Convert "2" / "two" / "a" into an integer."""
    if token.isdigit():
        return int(token)
    return _NUMBER_WORDS[token]


def resolve_relative_date(
    phrase: Optional[str], anchor: date, today: Optional[date] = None
) -> Optional[date]:
    """Resolve a spoken relative date against an anchor date.

    "Today", "tomorrow" and "the day after tomorrow" always count from the
    real today, even when other phrases count from an appointment.

    Args:
        phrase: Raw caller phrase ("next week", "next Tuesday", "in 2 weeks")
        anchor: Date the phrase is relative to
        today: Current office date; defaults to the anchor

    Returns:
        Resolved date, or None if the phrase is not a relative expression
    """
    if not phrase:
        return None

    text = phrase.lower().strip()
    current = today or anchor

    if "day after tomorrow" in text:
        return current + timedelta(days=2)
    if "tomorrow" in text:
        return current + timedelta(days=1)
    if "today" in text:
        return current
    if "same day" in text:
        return anchor

    match = _IN_UNITS.search(text) or _UNITS_LATER.search(text)
    if match:
        amount = _count(match.group(1))
        days = amount * 7 if match.group(2) == "week" else amount
        return anchor + timedelta(days=days)

    if "next week" in text or "following week" in text or "week later" in text:
        weekday_match = _WEEKDAY.search(text)
        if weekday_match:
            # "next week Tuesday": the Tuesday of the following week
            target = WEEKDAYS.index(weekday_match.group(2))
            monday_next = anchor + timedelta(days=7 - anchor.weekday())
            return monday_next + timedelta(days=target)
        return anchor + timedelta(days=7)

    if "next month" in text:
        month = anchor.month + 1
        year = anchor.year + (month - 1) // 12
        month = (month - 1) % 12 + 1
        day = min(anchor.day, 28)
        return date(year, month, day)

    weekday_match = _WEEKDAY.search(text)
    if weekday_match:
        target = WEEKDAYS.index(weekday_match.group(2))
        days_ahead = target - anchor.weekday()
        # Same weekday or earlier rolls forward to the next occurrence
        if days_ahead <= 0:
            days_ahead += 7
        return anchor + timedelta(days=days_ahead)

    return None


def resolve_requested_date(
    explicit: Optional[date],
    phrase: Optional[str],
    anchor: date,
    today: Optional[date] = None,
) -> Optional[date]:
    """Pick the caller's target date.

    A relative phrase wins over an LLM-computed absolute date, because
    the absolute value may have been computed against the wrong anchor
    (e.g. "next week" taken from today instead of from the appointment).
    """
    relative = resolve_relative_date(phrase, anchor, today)
    if relative is not None:
        return relative
    return explicit

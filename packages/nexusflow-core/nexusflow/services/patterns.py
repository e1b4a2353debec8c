"""
Generation pattern expansion.

Turns a template's (week, weekday, count) entries into concrete due dates inside
a reference month, and decides which days a weekly or monthly recurring task
falls on. Pure functions: no I/O, same output for the same input.
"""

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional, Tuple

from nexusflow.errors import ValidationError
from nexusflow.models.client import PatternEntry
from nexusflow.models.metrics import sunday_weekday

WEEKDAY_NAMES = ("Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday")

_WEEKDAY_INDEX = {name.lower(): index for index, name in enumerate(WEEKDAY_NAMES)}

_MONTH_REF = re.compile(r"^(\d{4})-(\d{2})$")

# Week 5 is the last occurrence, which only exists in months with five of that weekday
MAX_WEEK = 5


@dataclass(frozen=True)
class PatternSlot:
    """count tasks due on due_date, produced by pattern entry entry_index."""

    due_date: date
    count: int
    entry_index: int


@dataclass(frozen=True)
class TaskSlot:
    """
    A single task to generate.

    slot_key is "<due_date>#<n>" where n numbers the tasks sharing that due date,
    so the key is stable across runs for the same pattern and month.
    """

    due_date: date
    slot_key: str
    entry_index: int


def parse_month_reference(month_year_reference: str) -> Tuple[int, int]:
    """
    Parse "YYYY-MM" into (year, month).

    Raises:
        ValidationError: If the reference is malformed
    """
    match = _MONTH_REF.match(month_year_reference or "")
    if not match:
        raise ValidationError(f"Invalid month reference: {month_year_reference!r}. Expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid month in reference: {month_year_reference!r}")
    return year, month


def format_month_reference(day: date) -> str:
    """The "YYYY-MM" reference of the month containing day."""
    return f"{day.year:04d}-{day.month:02d}"


def parse_weekday(value) -> int:
    """
    Weekday index with Sunday = 0, from an English name or an integer 0..6.

    Raises:
        ValidationError: If the weekday is not recognized
    """
    if isinstance(value, bool):
        raise ValidationError(f"Unrecognized weekday: {value!r}")
    if isinstance(value, int):
        if 0 <= value <= 6:
            return value
        raise ValidationError(f"Unrecognized weekday: {value!r}")
    if isinstance(value, str) and value.strip().lower() in _WEEKDAY_INDEX:
        return _WEEKDAY_INDEX[value.strip().lower()]
    raise ValidationError(f"Unrecognized weekday: {value!r}")


def parse_weekday_list(details) -> frozenset:
    """
    Weekday indexes from a comma separated string ("Monday,Thursday") or a list.

    Raises:
        ValidationError: If no weekday is given or one is not recognized
    """
    if isinstance(details, str):
        items = [item for item in details.split(",") if item.strip()]
    else:
        items = list(details or [])
    if not items:
        raise ValidationError("At least one weekday is required")
    return frozenset(parse_weekday(item) for item in items)


def parse_day_of_month(details) -> int:
    """
    Day of month 1..31 from "15" or 15.

    Raises:
        ValidationError: If the value is not a day of month
    """
    if isinstance(details, bool):
        raise ValidationError(f"Invalid day of month: {details!r}")
    try:
        day = int(str(details).strip())
    except ValueError:
        raise ValidationError(f"Invalid day of month: {details!r}") from None
    if not 1 <= day <= 31:
        raise ValidationError(f"Invalid day of month: {details!r}. Must be 1..31")
    return day


def normalize_recurrence_details(recurrence_type: str, details) -> Optional[str]:
    """
    Canonical stored form of a recurrence's details.

    weekly becomes weekday names in Sunday-first order, monthly the day number.
    Other recurrence types keep details as given.

    Raises:
        ValidationError: If weekly or monthly details are missing or malformed
    """
    if recurrence_type == "weekly":
        return ",".join(WEEKDAY_NAMES[i] for i in sorted(parse_weekday_list(details)))
    if recurrence_type == "monthly":
        return str(parse_day_of_month(details))
    return details


def recurrence_matches(recurrence_type: str, details, day: date) -> bool:
    """
    Whether a weekly or monthly recurring task falls on day.

    A monthly day the month doesn't have (31 in April) never matches.
    Other recurrence types never match.
    """
    if recurrence_type == "weekly":
        return sunday_weekday(day) in parse_weekday_list(details)
    if recurrence_type == "monthly":
        return day.day == parse_day_of_month(details)
    return False


def nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> Optional[date]:
    """
    Date of the n-th occurrence of weekday (Sunday = 0) in the month.

    Returns None when the month has fewer than n occurrences.
    """
    first = date(year, month, 1)
    offset = (weekday - sunday_weekday(first)) % 7
    day = 1 + offset + 7 * (n - 1)
    if day > calendar.monthrange(year, month)[1]:
        return None
    return date(year, month, day)


def validate_entry(entry: PatternEntry) -> Tuple[int, int, int]:
    """
    Check one pattern entry and return (week, weekday, count).

    Raises:
        ValidationError: On an out-of-range week, unknown weekday or bad count
    """
    week = entry.week
    if isinstance(week, bool) or not isinstance(week, int) or not 1 <= week <= MAX_WEEK:
        raise ValidationError(f"Invalid pattern week: {week!r}. Must be 1..{MAX_WEEK}")

    weekday = parse_weekday(entry.day_of_week)

    count = entry.count
    if isinstance(count, bool) or not isinstance(count, int) or count < 0:
        raise ValidationError(f"Invalid pattern count: {count!r}. Must be a non-negative integer")

    return week, weekday, count


def _coerce(entry) -> PatternEntry:
    if isinstance(entry, PatternEntry):
        return entry
    if isinstance(entry, dict):
        return PatternEntry.from_dict(entry)
    raise ValidationError(f"Invalid pattern entry: {entry!r}")


def expand_pattern(
    generation_pattern: Iterable,
    year: int,
    month: int,
    default_due_days: Optional[int] = 0,
) -> List[PatternSlot]:
    """
    Resolve each pattern entry to a due date in the given month.

    Entries asking for a fifth occurrence the month doesn't have are skipped.
    Entries with count 0 produce nothing. The whole pattern is validated before
    anything is resolved, so a bad entry rejects the pattern as a unit.

    Args:
        generation_pattern: PatternEntry objects or their dict form
        year: Reference year
        month: Reference month (1..12)
        default_due_days: Days added to the slot date (None means 0)

    Returns:
        Slots ordered by due date, then by entry order

    Raises:
        ValidationError: If any entry is malformed
    """
    entries = [validate_entry(_coerce(entry)) for entry in generation_pattern]
    shift = timedelta(days=default_due_days or 0)

    slots = []
    for index, (week, weekday, count) in enumerate(entries):
        if count == 0:
            continue
        slot_date = nth_weekday_of_month(year, month, weekday, week)
        if slot_date is None:
            continue
        slots.append(PatternSlot(due_date=slot_date + shift, count=count, entry_index=index))

    slots.sort(key=lambda s: (s.due_date, s.entry_index))
    return slots


def expand_task_slots(
    generation_pattern: Iterable,
    month_year_reference: str,
    default_due_days: Optional[int] = 0,
) -> List[TaskSlot]:
    """One TaskSlot per task to generate for the month, with stable slot keys."""
    year, month = parse_month_reference(month_year_reference)

    per_day: dict = {}
    task_slots = []
    for slot in expand_pattern(generation_pattern, year, month, default_due_days):
        for _ in range(slot.count):
            n = per_day.get(slot.due_date, 0)
            per_day[slot.due_date] = n + 1
            task_slots.append(TaskSlot(
                due_date=slot.due_date,
                slot_key=f"{slot.due_date.isoformat()}#{n}",
                entry_index=slot.entry_index,
            ))
    return task_slots

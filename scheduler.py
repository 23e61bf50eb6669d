"""
Pre-order Scheduler
===================
Owner-configured date/time windows for pre-orders.

With restrictions disabled every slot is open. With restrictions enabled a
slot must fall on a configured date, inside [start_time, end_time]
inclusive, compared as minutes since midnight in the restaurant's timezone.
"""

import re
import logging
from typing import Iterable, Tuple
from datetime import datetime, date as date_cls, tzinfo

from errors import ValidationError, ScheduleViolation
from models import PreorderSchedule, PreorderScheduleEntry


logger = logging.getLogger(__name__)


TIME_PATTERN = re.compile(r"^(\d{1,2}):(\d{2})$")


def time_to_minutes(value: str) -> int:
    """
    Convert "HH:MM" (24h) to minutes since midnight.

    Raises:
        ValidationError: If the value is not a valid time
    """
    match = TIME_PATTERN.match((value or "").strip())
    if not match:
        raise ValidationError(f"Invalid time (expected HH:MM): {value!r}")

    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise ValidationError(f"Invalid time (expected HH:MM): {value!r}")

    return hours * 60 + minutes


def _validate_date(value: str) -> str:
    try:
        return date_cls.fromisoformat((value or "").strip()).isoformat()
    except ValueError:
        raise ValidationError(f"Invalid date (expected YYYY-MM-DD): {value!r}")


def validate_entry(entry: PreorderScheduleEntry) -> PreorderScheduleEntry:
    """
    Validate a schedule entry at configuration time.

    Raises:
        ValidationError: If the date or a time is malformed
        ScheduleViolation: If the window does not start before it ends
    """
    day = _validate_date(entry.date)
    start = time_to_minutes(entry.start_time)
    end = time_to_minutes(entry.end_time)

    if start >= end:
        raise ScheduleViolation(
            f"Start time must be before end time on {day}: "
            f"{entry.start_time} - {entry.end_time}"
        )

    return PreorderScheduleEntry(date=day, start_time=entry.start_time, end_time=entry.end_time)


def add_entry(schedule: PreorderSchedule, entry: PreorderScheduleEntry) -> PreorderSchedule:
    """Add an entry, replacing any existing entry for the same date."""
    entry = validate_entry(entry)
    dates = [existing for existing in schedule.dates if existing.date != entry.date]
    dates.append(entry)
    return PreorderSchedule(
        restrictions_enabled=schedule.restrictions_enabled,
        dates=tuple(sorted(dates, key=lambda e: e.date)),
    )


def remove_entry(schedule: PreorderSchedule, date: str) -> PreorderSchedule:
    return PreorderSchedule(
        restrictions_enabled=schedule.restrictions_enabled,
        dates=tuple(e for e in schedule.dates if e.date != date),
    )


def build_schedule(restrictions_enabled: bool, entries: Iterable[PreorderScheduleEntry]) -> PreorderSchedule:
    """
    Build a validated schedule from owner input.

    Later entries for a date replace earlier ones.
    """
    schedule = PreorderSchedule(restrictions_enabled=bool(restrictions_enabled))
    for entry in entries:
        schedule = add_entry(schedule, entry)
    return schedule


def is_slot_allowed(schedule: PreorderSchedule, date: str, time: str) -> bool:
    """
    Check a requested date ("YYYY-MM-DD") and time ("HH:MM").

    Raises:
        ValidationError: If the time is malformed
    """
    if not schedule.restrictions_enabled:
        return True

    entry = schedule.entry_for(date)
    if entry is None:
        return False

    minutes = time_to_minutes(time)
    return time_to_minutes(entry.start_time) <= minutes <= time_to_minutes(entry.end_time)


def local_slot(scheduled_at: datetime, tz: tzinfo) -> Tuple[str, str]:
    """Date and time strings of a timestamp in the restaurant's timezone."""
    local = scheduled_at.astimezone(tz)
    return local.date().isoformat(), local.strftime("%H:%M")


def ensure_slot_allowed(schedule: PreorderSchedule, scheduled_at: datetime, tz: tzinfo):
    """
    Windows are minute-granular: the end minute is allowed only at its
    first instant, so 19:00:45 falls outside a window ending at 19:00.

    Raises:
        ScheduleViolation: If the timestamp falls outside the schedule
    """
    date, time = local_slot(scheduled_at, tz)
    entry = schedule.entry_for(date)

    allowed = is_slot_allowed(schedule, date, time)
    if allowed and schedule.restrictions_enabled and time_to_minutes(time) == time_to_minutes(entry.end_time):
        local = scheduled_at.astimezone(tz)
        allowed = not (local.second or local.microsecond)

    if not allowed:
        if entry is None:
            message = f"Pre-orders are not available on {date}"
        else:
            message = (
                f"Pre-orders on {date} are only available between "
                f"{entry.start_time} and {entry.end_time}"
            )
        logger.warning(message, extra={"scheduled_at": scheduled_at.isoformat()})
        raise ScheduleViolation(message)

"""Doctor availability evaluation.

A doctor is bookable at a given date and time when all of the following hold:

- their weekly schedule has an entry for that day of the week and the entry
  is marked available,
- the manual ``is_on_leave`` override is off,
- the date is not inside any of their leave ranges (bounds inclusive),
- the time falls between the entry's start and end time (bounds inclusive).

Malformed or missing data makes the doctor unavailable; nothing here raises.
"""

import logging
import re
from datetime import date, datetime, time

logger = logging.getLogger(__name__)

DAYS_OF_WEEK = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday', 'saturday', 'sunday')

CLOCK_TIME_PATTERN = re.compile(r'^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$')


def day_of_week(on_date: date) -> str:
    # date.weekday() is locale independent: Monday == 0.
    return DAYS_OF_WEEK[on_date.weekday()]


def parse_clock_time(value) -> int | None:
    """Return minutes since midnight for an ``"HH:MM"`` string or ``time``, else None."""
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if not isinstance(value, str):
        return None

    match = CLOCK_TIME_PATTERN.match(value.strip())
    if not match:
        return None

    return int(match.group(1)) * 60 + int(match.group(2))


def normalize_clock_time(value: str) -> str:
    """Zero-pad a valid clock time (``"9:05"`` -> ``"09:05"``); raise ValueError otherwise."""
    minutes = parse_clock_time(value)
    if minutes is None:
        raise ValueError('Valid time format (HH:MM) is required.')
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def _as_date(value) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return None


def find_schedule_entry(schedule, day_name: str):
    for entry in schedule or ():
        if getattr(entry, 'day_of_week', None) == day_name:
            return entry
    return None


def is_on_leave_for(leave_dates, on_date: date) -> bool:
    for leave in leave_dates or ():
        start_date = _as_date(getattr(leave, 'start_date', None))
        end_date = _as_date(getattr(leave, 'end_date', None))
        # A missing bound leaves that side of the range open.
        if (start_date is None or start_date <= on_date) and (end_date is None or on_date <= end_date):
            return True
    return False


def is_doctor_available(doctor, on_date: date, at_time) -> bool:
    on_date = _as_date(on_date)
    if doctor is None or on_date is None:
        return False

    entry = find_schedule_entry(getattr(doctor, 'schedule', None), day_of_week(on_date))
    if entry is None or not getattr(entry, 'is_available', False):
        return False

    if getattr(doctor, 'is_on_leave', False):
        return False

    if is_on_leave_for(getattr(doctor, 'leave_dates', None), on_date):
        return False

    requested = parse_clock_time(at_time)
    opens = parse_clock_time(getattr(entry, 'start_time', None))
    closes = parse_clock_time(getattr(entry, 'end_time', None))
    if requested is None or opens is None or closes is None:
        logger.warning(
            'Treating doctor %s as unavailable: unreadable time data (%r, %r-%r)',
            getattr(doctor, 'doctor_id', None),
            at_time,
            getattr(entry, 'start_time', None),
            getattr(entry, 'end_time', None),
        )
        return False

    return opens <= requested <= closes

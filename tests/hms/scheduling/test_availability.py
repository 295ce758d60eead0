from datetime import date, datetime, time
from types import SimpleNamespace

import pytest

from hms.scheduling.availability import (
    day_of_week,
    is_doctor_available,
    normalize_clock_time,
    parse_clock_time,
)

MONDAY = date(2024, 6, 10)
SATURDAY = date(2024, 6, 15)


def _entry(day: str, start_time: str = '09:00', end_time: str = '17:00', is_available: bool = True):
    return SimpleNamespace(day_of_week=day, start_time=start_time, end_time=end_time, is_available=is_available)


def _leave(start_date: date, end_date: date):
    return SimpleNamespace(start_date=start_date, end_date=end_date, reason='Conference')


def _doctor(schedule=None, is_on_leave: bool = False, leave_dates=None):
    return SimpleNamespace(
        doctor_id='D00001',
        schedule=[_entry('monday')] if schedule is None else schedule,
        is_on_leave=is_on_leave,
        leave_dates=leave_dates or [],
    )


@pytest.mark.parametrize(
    ('on_date', 'expected'),
    [
        (date(2024, 6, 10), 'monday'),
        (date(2024, 6, 11), 'tuesday'),
        (date(2024, 6, 12), 'wednesday'),
        (date(2024, 6, 13), 'thursday'),
        (date(2024, 6, 14), 'friday'),
        (date(2024, 6, 15), 'saturday'),
        (date(2024, 6, 16), 'sunday'),
    ],
)
def test_day_of_week_uses_fixed_lowercase_names(on_date: date, expected: str) -> None:
    assert day_of_week(on_date) == expected


def test_parse_clock_time_returns_minutes_of_day() -> None:
    assert parse_clock_time('09:00') == 540
    assert parse_clock_time('9:05') == 545
    assert parse_clock_time('23:59') == 1439
    assert parse_clock_time(time(17, 0)) == 1020


@pytest.mark.parametrize('value', ['24:00', '9:5', '09:60', 'noon', '', None, 900])
def test_parse_clock_time_rejects_malformed_values(value) -> None:
    assert parse_clock_time(value) is None


def test_normalize_clock_time_zero_pads() -> None:
    assert normalize_clock_time(' 9:05 ') == '09:05'

    with pytest.raises(ValueError):
        normalize_clock_time('25:00')


@pytest.mark.parametrize(
    ('at_time', 'expected'),
    [
        ('09:00', True),
        ('12:30', True),
        ('17:00', True),
        ('08:59', False),
        ('17:01', False),
    ],
)
def test_schedule_bounds_are_inclusive(at_time: str, expected: bool) -> None:
    assert is_doctor_available(_doctor(), MONDAY, at_time) is expected


def test_leave_range_blocks_every_time_that_day() -> None:
    doctor = _doctor(leave_dates=[_leave(date(2024, 6, 8), date(2024, 6, 10))])

    assert is_doctor_available(doctor, MONDAY, '09:00') is False
    assert is_doctor_available(doctor, MONDAY, '12:00') is False
    assert is_doctor_available(doctor, MONDAY, '17:00') is False


def test_leave_range_bounds_are_inclusive() -> None:
    starts_today = _doctor(leave_dates=[_leave(MONDAY, date(2024, 6, 20))])
    ended_yesterday = _doctor(leave_dates=[_leave(date(2024, 6, 1), date(2024, 6, 9))])

    assert is_doctor_available(starts_today, MONDAY, '10:00') is False
    assert is_doctor_available(ended_yesterday, MONDAY, '10:00') is True


def test_leave_range_accepts_datetime_bounds() -> None:
    doctor = _doctor(leave_dates=[_leave(datetime(2024, 6, 10, 0, 0), datetime(2024, 6, 10, 0, 0))])

    assert is_doctor_available(doctor, MONDAY, '10:00') is False


def test_manual_leave_flag_blocks_without_any_leave_range() -> None:
    assert is_doctor_available(_doctor(is_on_leave=True), MONDAY, '10:00') is False


def test_day_off_entry_blocks_the_whole_day() -> None:
    doctor = _doctor(schedule=[_entry('monday'), _entry('saturday', is_available=False)])

    assert is_doctor_available(doctor, SATURDAY, '10:00') is False


def test_missing_day_entry_blocks_the_whole_day() -> None:
    assert is_doctor_available(_doctor(), SATURDAY, '10:00') is False


def test_first_matching_schedule_entry_wins() -> None:
    doctor = _doctor(schedule=[_entry('monday', '09:00', '12:00'), _entry('monday', '13:00', '17:00')])

    assert is_doctor_available(doctor, MONDAY, '10:00') is True
    assert is_doctor_available(doctor, MONDAY, '14:00') is False


@pytest.mark.parametrize(
    'doctor',
    [
        None,
        SimpleNamespace(),
        _doctor(schedule=[]),
        _doctor(schedule=[_entry('monday', start_time='nine')]),
        _doctor(schedule=[_entry('monday', end_time=None)]),
        _doctor(schedule=[SimpleNamespace(day_of_week='monday')]),
    ],
)
def test_malformed_doctor_data_is_unavailable(doctor) -> None:
    assert is_doctor_available(doctor, MONDAY, '10:00') is False


def test_malformed_requested_time_is_unavailable() -> None:
    assert is_doctor_available(_doctor(), MONDAY, '10am') is False
    assert is_doctor_available(_doctor(), None, '10:00') is False

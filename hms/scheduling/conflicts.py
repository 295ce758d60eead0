"""Appointment conflict detection.

Intervals are half-open: an appointment from 10:00 for 30 minutes occupies
``[10:00, 10:30)``, so a booking starting at 10:30 does not collide with it.
"""

import logging
from datetime import date, datetime, timedelta

from sqlalchemy.orm import Session

from hms.models.appointment import Appointment
from hms.scheduling.availability import parse_clock_time

logger = logging.getLogger(__name__)

# Statuses that free the calendar slot they were booked in.
INACTIVE_STATUSES = ('cancelled', 'no-show')


def appointment_interval(on_date: date, at_time, duration_minutes: int) -> tuple[datetime, datetime] | None:
    minutes = parse_clock_time(at_time)
    if minutes is None or on_date is None or not duration_minutes or duration_minutes <= 0:
        return None

    start_time = datetime.combine(on_date, datetime.min.time()) + timedelta(minutes=minutes)
    return start_time, start_time + timedelta(minutes=duration_minutes)


def intervals_overlap(first: tuple[datetime, datetime], second: tuple[datetime, datetime]) -> bool:
    first_start, first_end = first
    second_start, second_end = second
    return first_start < second_end and first_end > second_start


def find_conflicting_appointments(
    existing_appointments,
    on_date: date,
    at_time,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> list:
    candidate = appointment_interval(on_date, at_time, duration_minutes)
    if candidate is None:
        raise ValueError('Candidate appointment needs a valid date, HH:MM time and positive duration.')

    conflicts = []
    for appointment in existing_appointments or ():
        if exclude_appointment_id is not None and appointment.id == exclude_appointment_id:
            continue
        if appointment.status in INACTIVE_STATUSES:
            continue

        existing = appointment_interval(appointment.date, appointment.time, appointment.duration)
        if existing is None:
            logger.warning('Skipping appointment %s with unreadable date/time/duration', appointment.id)
            continue

        if intervals_overlap(candidate, existing):
            conflicts.append(appointment)

    return conflicts


def has_conflict(
    existing_appointments,
    on_date: date,
    at_time,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> bool:
    """Whether the candidate slot overlaps any active appointment in ``existing_appointments``.

    A candidate that cannot be turned into an interval counts as a conflict so
    that it is never booked.
    """
    try:
        return bool(
            find_conflicting_appointments(
                existing_appointments,
                on_date,
                at_time,
                duration_minutes,
                exclude_appointment_id,
            )
        )
    except ValueError:
        return True


def get_same_day_appointments(
    db: Session,
    doctor_pk: int,
    on_date: date,
    exclude_appointment_id: int | None = None,
) -> list[Appointment]:
    query = db.query(Appointment).filter(
        Appointment.doctor_pk == doctor_pk,
        Appointment.date == on_date,
        Appointment.status.not_in(INACTIVE_STATUSES),
    )
    if exclude_appointment_id is not None:
        query = query.filter(Appointment.id != exclude_appointment_id)

    return query.all()


def check_conflict(
    db: Session,
    doctor_pk: int,
    on_date: date,
    at_time,
    duration_minutes: int,
    exclude_appointment_id: int | None = None,
) -> bool:
    existing_appointments = get_same_day_appointments(db, doctor_pk, on_date, exclude_appointment_id)
    return has_conflict(existing_appointments, on_date, at_time, duration_minutes, exclude_appointment_id)

import logging
import datetime as dt

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from hms.auth.dependencies import get_current_user, require_roles
from hms.core import config
from hms.database import format_display_id, get_db
from hms.models.appointment import (
    APPOINTMENT_STATUSES,
    APPOINTMENT_TYPES,
    DEFAULT_DURATION_MINUTES,
    MAX_DURATION_MINUTES,
    MIN_DURATION_MINUTES,
    PAYMENT_STATUSES,
    PRIORITIES,
    Appointment,
)
from hms.models.doctor import Doctor
from hms.models.patient import Patient
from hms.models.user import User
from hms.routes.common import (
    MessageResponse,
    access_denied,
    apply_sort,
    database_unavailable,
    paginate,
    require_doctor_profile,
    require_patient_profile,
)
from hms.routes.doctor_routes import DoctorSummaryResponse
from hms.routes.patient_routes import PatientSummaryResponse
from hms.scheduling.availability import normalize_clock_time
from hms.scheduling.conflicts import INACTIVE_STATUSES, check_conflict

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)

APPOINTMENT_ID_PREFIX = 'A'
APPOINTMENT_SORT_FIELDS = {
    'date': 'date',
    'time': 'time',
    'status': 'status',
    'priority': 'priority',
    'appointmentId': 'appointment_id',
    'appointment_id': 'appointment_id',
    'createdAt': 'created_at',
}
DOCTOR_UNAVAILABLE_DETAIL = 'Doctor is not available at this time'
CONFLICT_DETAIL = 'Appointment time conflicts with existing appointment'
BOOKING_RETRY_EXHAUSTED_DETAIL = 'Appointment could not be booked because of a concurrent change. Please try again.'

# SQLSTATEs for serialization failure and deadlock.
WRITE_CONFLICT_SQLSTATES = {'40001', '40P01'}


def _validate_choice(value: str | None, choices: tuple[str, ...], label: str) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in choices:
        raise ValueError(f'Valid {label} is required.')
    return normalized


def _validate_time(value: str | None) -> str | None:
    if value is None:
        return None
    return normalize_clock_time(value)


class CreateAppointmentRequest(BaseModel):
    patient_id: str
    doctor_id: str
    date: dt.date
    time: str
    reason: str
    fee: float = Field(ge=0)
    duration: int = Field(default=DEFAULT_DURATION_MINUTES, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES)
    type: str = 'consultation'
    priority: str = 'medium'
    notes: str | None = None
    symptoms: list[str] = Field(default_factory=list)

    @field_validator('patient_id', 'doctor_id')
    @classmethod
    def validate_display_id(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError('Patient and doctor IDs are required.')
        return normalized

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str) -> str:
        return _validate_time(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Reason is required.')
        return normalized

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        return _validate_choice(value, APPOINTMENT_TYPES, 'appointment type')

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, value: str) -> str:
        return _validate_choice(value, PRIORITIES, 'priority')


class UpdateAppointmentRequest(BaseModel):
    date: dt.date | None = None
    time: str | None = None
    duration: int | None = Field(default=None, ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES)
    reason: str | None = None
    fee: float | None = Field(default=None, ge=0)
    type: str | None = None
    priority: str | None = None
    notes: str | None = None
    symptoms: list[str] | None = None
    payment_status: str | None = None
    reminder_sent: bool | None = None

    @field_validator('time')
    @classmethod
    def validate_time(cls, value: str | None) -> str | None:
        return _validate_time(value)

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Reason cannot be empty.')
        return normalized

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str | None) -> str | None:
        return _validate_choice(value, APPOINTMENT_TYPES, 'appointment type')

    @field_validator('priority')
    @classmethod
    def validate_priority(cls, value: str | None) -> str | None:
        return _validate_choice(value, PRIORITIES, 'priority')

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, value: str | None) -> str | None:
        return _validate_choice(value, PAYMENT_STATUSES, 'payment status')


class UpdateAppointmentStatusRequest(BaseModel):
    status: str
    cancellation_reason: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _validate_choice(value, APPOINTMENT_STATUSES, 'status')

    @field_validator('cancellation_reason')
    @classmethod
    def validate_cancellation_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Cancellation reason cannot be empty.')
        return normalized


class AppointmentResponse(BaseModel):
    id: int
    appointment_id: str
    patient: PatientSummaryResponse
    doctor: DoctorSummaryResponse
    date: dt.date
    time: str
    duration: int
    reason: str
    status: str
    type: str
    priority: str
    notes: str | None = None
    symptoms: list[str] | None = None
    fee: float
    payment_status: str
    reminder_sent: bool
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: dt.datetime | None = None

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    total_pages: int
    current_page: int
    total: int


def is_write_conflict(exc: OperationalError) -> bool:
    original = getattr(exc, 'orig', None)
    if getattr(original, 'pgcode', None) in WRITE_CONFLICT_SQLSTATES:
        return True
    return 'database is locked' in str(original).lower()


def lock_doctor(db: Session, doctor_pk: int) -> Doctor | None:
    # Serializes bookings per doctor between the checks and the insert.
    return db.query(Doctor).filter(Doctor.id == doctor_pk).with_for_update().first()


def ensure_bookable(
    db: Session,
    doctor: Doctor,
    on_date: dt.date,
    at_time: str,
    duration: int,
    exclude_appointment_id: int | None = None,
) -> None:
    if not doctor.is_available(on_date, at_time):
        logger.info('Rejected booking for doctor %s on %s %s: unavailable', doctor.doctor_id, on_date, at_time)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=DOCTOR_UNAVAILABLE_DETAIL,
        )

    if check_conflict(db, doctor.id, on_date, at_time, duration, exclude_appointment_id):
        logger.info('Rejected booking for doctor %s on %s %s: conflict', doctor.doctor_id, on_date, at_time)
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=CONFLICT_DETAIL,
        )


def run_booking_transaction(db: Session, attempt):
    """Run ``attempt(db)`` and commit, retrying once from scratch on a write conflict.

    ``attempt`` must redo its checks on every call; it may raise HTTPException
    to reject the booking.
    """
    for attempt_number in range(1, config.BOOKING_COMMIT_ATTEMPTS + 1):
        try:
            result = attempt(db)
            db.commit()
            return result
        except HTTPException:
            db.rollback()
            raise
        except OperationalError as exc:
            db.rollback()
            if not is_write_conflict(exc):
                raise
            if attempt_number >= config.BOOKING_COMMIT_ATTEMPTS:
                logger.warning('Booking write conflict persisted after %s attempts', attempt_number)
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=BOOKING_RETRY_EXHAUSTED_DETAIL,
                ) from exc
            logger.warning('Booking write conflict, retrying (attempt %s)', attempt_number)


def get_appointment_or_404(appointment_id: int, db: Session) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Appointment not found',
        )
    return appointment


def ensure_can_view_appointment(appointment: Appointment, current_user: User, db: Session) -> None:
    if current_user.role == 'patient':
        if appointment.patient_pk != require_patient_profile(current_user, db).id:
            raise access_denied()

    if current_user.role == 'doctor':
        if appointment.doctor_pk != require_doctor_profile(current_user, db).id:
            raise access_denied()


def scope_to_current_user(query, current_user: User, db: Session):
    if current_user.role == 'doctor':
        return query.filter(Appointment.doctor_pk == require_doctor_profile(current_user, db).id)
    if current_user.role == 'patient':
        return query.filter(Appointment.patient_pk == require_patient_profile(current_user, db).id)
    return query


def filter_appointments(query, appointment_status: str | None, on_date: dt.date | None):
    if appointment_status:
        query = query.filter(Appointment.status == appointment_status.strip().lower())
    if on_date:
        query = query.filter(Appointment.date == on_date)
    return query


def build_list_response(query, page: int, limit: int, sort_by: str, sort_order: str) -> AppointmentListResponse:
    query = apply_sort(query, Appointment, sort_by, sort_order, APPOINTMENT_SORT_FIELDS)
    appointments, total, total_pages = paginate(query, page, limit)

    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
        total_pages=total_pages,
        current_page=page,
        total=total,
    )


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    appointment_status: str | None = Query(default=None, alias='status'),
    on_date: dt.date | None = Query(default=None, alias='date'),
    doctor_id: str | None = Query(default=None),
    patient_id: str | None = Query(default=None),
    sort_by: str = Query(default='date', alias='sortBy'),
    sort_order: str = Query(default='desc', alias='sortOrder'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        query = filter_appointments(db.query(Appointment), appointment_status, on_date)
        if doctor_id:
            query = query.join(Doctor, Appointment.doctor_pk == Doctor.id).filter(
                Doctor.doctor_id == doctor_id.strip().upper()
            )
        if patient_id:
            query = query.join(Patient, Appointment.patient_pk == Patient.id).filter(
                Patient.patient_id == patient_id.strip().upper()
            )
        query = scope_to_current_user(query, current_user, db)

        return build_list_response(query, page, limit, sort_by, sort_order)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/today', response_model=list[AppointmentResponse])
def list_today_appointments(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        query = db.query(Appointment).filter(
            Appointment.date == dt.date.today(),
            Appointment.status.not_in(INACTIVE_STATUSES),
        )
        query = scope_to_current_user(query, current_user, db)

        return query.order_by(Appointment.time.asc(), Appointment.id.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/upcoming', response_model=list[AppointmentResponse])
def list_upcoming_appointments(
    limit: int = Query(default=10, ge=1),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        query = db.query(Appointment).filter(
            Appointment.date >= dt.date.today(),
            Appointment.status.in_(('scheduled', 'confirmed')),
        )
        query = scope_to_current_user(query, current_user, db)

        return query.order_by(
            Appointment.date.asc(),
            Appointment.time.asc(),
            Appointment.id.asc(),
        ).limit(min(limit, config.MAX_PAGE_SIZE)).all()
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/patient/{patient_id}', response_model=AppointmentListResponse)
def list_patient_appointments(
    patient_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    appointment_status: str | None = Query(default=None, alias='status'),
    on_date: dt.date | None = Query(default=None, alias='date'),
    sort_by: str = Query(default='date', alias='sortBy'),
    sort_order: str = Query(default='desc', alias='sortOrder'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        patient = db.query(Patient).filter(Patient.id == patient_id).first()
        if patient is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Patient not found',
            )

        if current_user.role == 'patient' and require_patient_profile(current_user, db).id != patient.id:
            raise access_denied()

        query = filter_appointments(
            db.query(Appointment).filter(Appointment.patient_pk == patient.id),
            appointment_status,
            on_date,
        )
        # Doctors only see the visits booked with them.
        if current_user.role == 'doctor':
            query = query.filter(Appointment.doctor_pk == require_doctor_profile(current_user, db).id)

        return build_list_response(query, page, limit, sort_by, sort_order)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/doctor/{doctor_id}', response_model=AppointmentListResponse)
def list_doctor_appointments(
    doctor_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    appointment_status: str | None = Query(default=None, alias='status'),
    on_date: dt.date | None = Query(default=None, alias='date'),
    sort_by: str = Query(default='date', alias='sortBy'),
    sort_order: str = Query(default='desc', alias='sortOrder'),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
        if doctor is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Doctor not found',
            )

        if current_user.role == 'doctor' and require_doctor_profile(current_user, db).id != doctor.id:
            raise access_denied()

        query = filter_appointments(
            db.query(Appointment).filter(Appointment.doctor_pk == doctor.id),
            appointment_status,
            on_date,
        )

        return build_list_response(query, page, limit, sort_by, sort_order)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        appointment = get_appointment_or_404(appointment_id, db)
        ensure_can_view_appointment(appointment, current_user, db)

        return appointment
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        patient = db.query(Patient).filter(Patient.patient_id == data.patient_id).first()
        if patient is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Patient not found',
            )

        doctor = db.query(Doctor).filter(Doctor.doctor_id == data.doctor_id).first()
        if doctor is None or not doctor.is_active:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Doctor not found',
            )

        if current_user.role == 'doctor' and require_doctor_profile(current_user, db).id != doctor.id:
            raise access_denied()

        doctor_pk = doctor.id
        patient_pk = patient.id

        def book(session: Session) -> Appointment:
            locked_doctor = lock_doctor(session, doctor_pk)
            ensure_bookable(session, locked_doctor, data.date, data.time, data.duration)

            appointment = Appointment(
                patient_pk=patient_pk,
                doctor_pk=doctor_pk,
                date=data.date,
                time=data.time,
                duration=data.duration,
                reason=data.reason,
                fee=data.fee,
                type=data.type,
                priority=data.priority,
                notes=data.notes,
                symptoms=data.symptoms,
                status='scheduled',
            )
            session.add(appointment)
            session.flush()
            appointment.appointment_id = format_display_id(APPOINTMENT_ID_PREFIX, appointment.id)
            return appointment

        appointment = run_booking_transaction(db, book)
        db.refresh(appointment)
        logger.info(
            'Booked appointment %s with doctor %s on %s %s',
            appointment.appointment_id,
            data.doctor_id,
            data.date,
            data.time,
        )

        return appointment
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.put('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        appointment = get_appointment_or_404(appointment_id, db)
        if current_user.role == 'doctor' and appointment.doctor_pk != require_doctor_profile(current_user, db).id:
            raise access_denied()

        changes = {
            field_name: value
            for field_name, value in data.model_dump(exclude_unset=True).items()
            if value is not None
        }
        reschedules = bool({'date', 'time', 'duration'} & changes.keys())

        def apply_changes(session: Session) -> Appointment:
            target = session.query(Appointment).filter(Appointment.id == appointment_id).first()
            if reschedules and target.status not in INACTIVE_STATUSES:
                locked_doctor = lock_doctor(session, target.doctor_pk)
                ensure_bookable(
                    session,
                    locked_doctor,
                    changes.get('date', target.date),
                    changes.get('time', target.time),
                    changes.get('duration', target.duration),
                    exclude_appointment_id=target.id,
                )

            for field_name, value in changes.items():
                setattr(target, field_name, value)
            return target

        appointment = run_booking_transaction(db, apply_changes)
        db.refresh(appointment)

        return appointment
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.put('/{appointment_id}/status', response_model=AppointmentResponse)
def update_appointment_status(
    appointment_id: int,
    data: UpdateAppointmentStatusRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        appointment = get_appointment_or_404(appointment_id, db)
        if current_user.role == 'doctor' and appointment.doctor_pk != require_doctor_profile(current_user, db).id:
            raise access_denied()

        def apply_status(session: Session) -> Appointment:
            target = session.query(Appointment).filter(Appointment.id == appointment_id).first()
            reactivates = target.status in INACTIVE_STATUSES and data.status not in INACTIVE_STATUSES
            if reactivates:
                # Inactive appointments may have been moved or had their slot rebooked.
                locked_doctor = lock_doctor(session, target.doctor_pk)
                ensure_bookable(
                    session,
                    locked_doctor,
                    target.date,
                    target.time,
                    target.duration,
                    exclude_appointment_id=target.id,
                )

            target.status = data.status
            if data.status == 'cancelled':
                target.cancellation_reason = data.cancellation_reason
                target.cancelled_by = current_user.role
                target.cancelled_at = dt.datetime.now()
            elif data.status not in INACTIVE_STATUSES:
                target.cancellation_reason = None
                target.cancelled_by = None
                target.cancelled_at = None
            return target

        appointment = run_booking_transaction(db, apply_status)
        db.refresh(appointment)
        logger.info('Appointment %s is now %s', appointment.appointment_id, appointment.status)

        return appointment
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.delete('/{appointment_id}', response_model=MessageResponse)
def delete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    try:
        appointment = get_appointment_or_404(appointment_id, db)
        db.delete(appointment)
        db.commit()
        logger.info('Deleted appointment %s', appointment.appointment_id)

        return MessageResponse(message='Appointment deleted successfully')
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc

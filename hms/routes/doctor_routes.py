import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hms.auth.dependencies import get_current_user, require_roles
from hms.database import format_display_id, get_db
from hms.models.doctor import Doctor, LeaveRange, ScheduleEntry
from hms.models.user import User
from hms.routes.common import (
    MessageResponse,
    access_denied,
    apply_sort,
    database_unavailable,
    paginate,
)
from hms.scheduling.availability import DAYS_OF_WEEK, normalize_clock_time, parse_clock_time

router = APIRouter(tags=['doctors'])

logger = logging.getLogger(__name__)

DOCTOR_ID_PREFIX = 'D'
DOCTOR_SORT_FIELDS = {
    'name': 'name',
    'specialization': 'specialization',
    'doctorId': 'doctor_id',
    'doctor_id': 'doctor_id',
    'consultationFee': 'consultation_fee',
    'consultation_fee': 'consultation_fee',
    'createdAt': 'created_at',
}


class ScheduleEntryModel(BaseModel):
    day_of_week: str
    start_time: str
    end_time: str
    is_available: bool = True

    class Config:
        from_attributes = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in DAYS_OF_WEEK:
            raise ValueError('Day must be one of monday through sunday.')
        return normalized

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_clock_time(cls, value: str) -> str:
        return normalize_clock_time(value)

    @model_validator(mode='after')
    def validate_hours(self):
        if parse_clock_time(self.start_time) >= parse_clock_time(self.end_time):
            raise ValueError('Schedule end time must be after start time.')
        return self


class LeaveRangeModel(BaseModel):
    start_date: date
    end_date: date
    reason: str | None = None

    class Config:
        from_attributes = True

    @model_validator(mode='after')
    def validate_range(self):
        if self.end_date < self.start_date:
            raise ValueError('Leave end date cannot be before its start date.')
        return self


class AvailabilityModel(BaseModel):
    schedule: list[ScheduleEntryModel] = Field(default_factory=list)
    is_on_leave: bool = False
    leave_dates: list[LeaveRangeModel] = Field(default_factory=list)

    @field_validator('schedule')
    @classmethod
    def validate_unique_days(cls, value: list[ScheduleEntryModel]) -> list[ScheduleEntryModel]:
        days = [entry.day_of_week for entry in value]
        if len(days) != len(set(days)):
            raise ValueError('Each day of the week can appear only once in a schedule.')
        return value


class UpdateScheduleRequest(BaseModel):
    availability: AvailabilityModel


# Stored rows are echoed back as-is; only requests are validated.
class ScheduleEntryResponse(BaseModel):
    day_of_week: str | None = None
    start_time: str | None = None
    end_time: str | None = None
    is_available: bool | None = None

    class Config:
        from_attributes = True


class LeaveRangeResponse(BaseModel):
    start_date: date | None = None
    end_date: date | None = None
    reason: str | None = None

    class Config:
        from_attributes = True


class AvailabilityResponse(BaseModel):
    schedule: list[ScheduleEntryResponse] = Field(default_factory=list)
    is_on_leave: bool = False
    leave_dates: list[LeaveRangeResponse] = Field(default_factory=list)


class QualificationModel(BaseModel):
    degree: str | None = None
    institution: str | None = None
    year: int | None = None


class CreateDoctorRequest(BaseModel):
    name: str
    specialization: str
    phone: str
    email: str
    consultation_fee: float = Field(ge=0)
    qualifications: list[QualificationModel] = Field(default_factory=list)
    address: dict = Field(default_factory=dict)
    experience_years: int | None = Field(default=None, ge=0)
    experience_description: str | None = None
    languages: list[str] = Field(default_factory=list)
    availability: AvailabilityModel = Field(default_factory=AvailabilityModel)

    @field_validator('name', 'specialization', 'phone')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field cannot be empty.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if '@' not in normalized:
            raise ValueError('Valid email is required.')
        return normalized


class UpdateDoctorRequest(BaseModel):
    name: str | None = None
    specialization: str | None = None
    phone: str | None = None
    email: str | None = None
    consultation_fee: float | None = Field(default=None, ge=0)
    qualifications: list[QualificationModel] | None = None
    address: dict | None = None
    experience_years: int | None = Field(default=None, ge=0)
    experience_description: str | None = None
    languages: list[str] | None = None

    @field_validator('name', 'specialization', 'phone')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field cannot be empty.')
        return normalized

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if '@' not in normalized:
            raise ValueError('Valid email is required.')
        return normalized


class DoctorResponse(BaseModel):
    id: int
    doctor_id: str
    name: str
    specialization: str
    phone: str
    email: str
    consultation_fee: float
    qualifications: list = Field(default_factory=list)
    address: dict = Field(default_factory=dict)
    experience_years: int | None = None
    experience_description: str | None = None
    languages: list[str] = Field(default_factory=list)
    is_active: bool
    availability: AvailabilityResponse


class DoctorSummaryResponse(BaseModel):
    id: int
    doctor_id: str
    name: str
    specialization: str

    class Config:
        from_attributes = True


class DoctorListResponse(BaseModel):
    doctors: list[DoctorResponse]
    total_pages: int
    current_page: int
    total: int


def serialize_availability(doctor: Doctor) -> AvailabilityResponse:
    return AvailabilityResponse(
        schedule=[ScheduleEntryResponse.model_validate(entry) for entry in doctor.schedule],
        is_on_leave=bool(doctor.is_on_leave),
        leave_dates=[LeaveRangeResponse.model_validate(leave) for leave in doctor.leave_dates],
    )


def serialize_doctor(doctor: Doctor) -> DoctorResponse:
    return DoctorResponse(
        id=doctor.id,
        doctor_id=doctor.doctor_id,
        name=doctor.name,
        specialization=doctor.specialization,
        phone=doctor.phone,
        email=doctor.email,
        consultation_fee=doctor.consultation_fee,
        qualifications=doctor.qualifications or [],
        address=doctor.address or {},
        experience_years=doctor.experience_years,
        experience_description=doctor.experience_description,
        languages=doctor.languages or [],
        is_active=bool(doctor.is_active),
        availability=serialize_availability(doctor),
    )


def replace_availability(doctor: Doctor, availability: AvailabilityModel) -> None:
    doctor.is_on_leave = availability.is_on_leave
    doctor.schedule = [ScheduleEntry(**entry.model_dump()) for entry in availability.schedule]
    doctor.leave_dates = [LeaveRange(**leave.model_dump()) for leave in availability.leave_dates]


def get_doctor_or_404(doctor_id: int, db: Session) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.id == doctor_id).first()
    if doctor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Doctor not found',
        )
    return doctor


def ensure_can_manage_doctor(doctor: Doctor, current_user: User) -> None:
    if current_user.role == 'doctor' and doctor.doctor_id != current_user.profile_id:
        raise access_denied()


@router.get('', response_model=DoctorListResponse)
def list_doctors(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    search: str | None = Query(default=None),
    specialization: str | None = Query(default=None),
    sort_by: str = Query(default='name', alias='sortBy'),
    sort_order: str = Query(default='asc', alias='sortOrder'),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        query = db.query(Doctor).filter(Doctor.is_active.is_(True))

        if search:
            pattern = f'%{search.strip()}%'
            query = query.filter(
                or_(
                    Doctor.name.ilike(pattern),
                    Doctor.doctor_id.ilike(pattern),
                    Doctor.specialization.ilike(pattern),
                )
            )

        if specialization:
            query = query.filter(Doctor.specialization.ilike(f'%{specialization.strip()}%'))

        query = apply_sort(query, Doctor, sort_by, sort_order, DOCTOR_SORT_FIELDS)
        doctors, total, total_pages = paginate(query, page, limit)

        return DoctorListResponse(
            doctors=[serialize_doctor(doctor) for doctor in doctors],
            total_pages=total_pages,
            current_page=page,
            total=total,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/available', response_model=list[DoctorSummaryResponse])
def list_available_doctors(
    date: date = Query(...),
    time: str = Query(...),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    if parse_clock_time(time) is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Valid time format (HH:MM) is required.',
        )

    try:
        doctors = db.query(Doctor).filter(Doctor.is_active.is_(True)).order_by(Doctor.name.asc()).all()
        return [doctor for doctor in doctors if doctor.is_available(date, time)]
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{doctor_id}', response_model=DoctorResponse)
def get_doctor(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        return serialize_doctor(get_doctor_or_404(doctor_id, db))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(
    data: CreateDoctorRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    try:
        doctor = Doctor(
            name=data.name,
            specialization=data.specialization,
            phone=data.phone,
            email=data.email,
            consultation_fee=data.consultation_fee,
            qualifications=[qualification.model_dump() for qualification in data.qualifications],
            address=data.address,
            experience_years=data.experience_years,
            experience_description=data.experience_description,
            languages=data.languages,
        )
        replace_availability(doctor, data.availability)

        db.add(doctor)
        db.flush()
        doctor.doctor_id = format_display_id(DOCTOR_ID_PREFIX, doctor.id)
        db.commit()
        db.refresh(doctor)
        logger.info('Created doctor %s', doctor.doctor_id)

        return serialize_doctor(doctor)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.put('/{doctor_id}', response_model=DoctorResponse)
def update_doctor(
    doctor_id: int,
    data: UpdateDoctorRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        doctor = get_doctor_or_404(doctor_id, db)
        ensure_can_manage_doctor(doctor, current_user)

        for field_name, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(doctor, field_name, value)

        db.commit()
        db.refresh(doctor)

        return serialize_doctor(doctor)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.delete('/{doctor_id}', response_model=MessageResponse)
def delete_doctor(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    try:
        doctor = get_doctor_or_404(doctor_id, db)
        doctor.is_active = False
        db.commit()
        logger.info('Deactivated doctor %s', doctor.doctor_id)

        return MessageResponse(message='Doctor deleted successfully')
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.get('/{doctor_id}/schedule', response_model=AvailabilityResponse)
def get_schedule(
    doctor_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        return serialize_availability(get_doctor_or_404(doctor_id, db))
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.put('/{doctor_id}/schedule', response_model=AvailabilityResponse)
def update_schedule(
    doctor_id: int,
    data: UpdateScheduleRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        doctor = get_doctor_or_404(doctor_id, db)
        ensure_can_manage_doctor(doctor, current_user)

        replace_availability(doctor, data.availability)
        db.commit()
        db.refresh(doctor)
        logger.info('Updated schedule for doctor %s', doctor.doctor_id)

        return serialize_availability(doctor)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc

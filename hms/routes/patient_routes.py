import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hms.auth.dependencies import get_current_user, require_roles
from hms.database import format_display_id, get_db
from hms.models.doctor import Doctor
from hms.models.patient import BLOOD_TYPES, GENDERS, Patient
from hms.models.user import User
from hms.routes.common import (
    MessageResponse,
    access_denied,
    apply_sort,
    database_unavailable,
    paginate,
    require_doctor_profile,
)
from hms.routes.doctor_routes import DoctorSummaryResponse

router = APIRouter(tags=['patients'])

logger = logging.getLogger(__name__)

PATIENT_ID_PREFIX = 'P'
PATIENT_SORT_FIELDS = {
    'name': 'name',
    'patientId': 'patient_id',
    'patient_id': 'patient_id',
    'age': 'age',
    'createdAt': 'created_at',
}


def _validate_gender(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in GENDERS:
        raise ValueError('Valid gender is required.')
    return normalized


def _validate_blood_type(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().upper()
    if normalized not in BLOOD_TYPES:
        raise ValueError('Valid blood type is required.')
    return normalized


class CreatePatientRequest(BaseModel):
    name: str
    age: int = Field(ge=0, le=150)
    gender: str
    phone: str
    blood_type: str
    email: str | None = None
    address: dict = Field(default_factory=dict)
    emergency_contact: dict = Field(default_factory=dict)
    medical_history: list[dict] = Field(default_factory=list)
    allergies: list[dict] = Field(default_factory=list)
    medications: list[dict] = Field(default_factory=list)
    insurance: dict = Field(default_factory=dict)

    @field_validator('name', 'phone')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field cannot be empty.')
        return normalized

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, value: str) -> str:
        return _validate_gender(value)

    @field_validator('blood_type')
    @classmethod
    def validate_blood_type(cls, value: str) -> str:
        return _validate_blood_type(value)

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None


class UpdatePatientRequest(BaseModel):
    name: str | None = None
    age: int | None = Field(default=None, ge=0, le=150)
    gender: str | None = None
    phone: str | None = None
    blood_type: str | None = None
    email: str | None = None
    address: dict | None = None
    emergency_contact: dict | None = None
    medical_history: list[dict] | None = None
    allergies: list[dict] | None = None
    medications: list[dict] | None = None
    insurance: dict | None = None

    @field_validator('name', 'phone')
    @classmethod
    def validate_optional_text(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Field cannot be empty.')
        return normalized

    @field_validator('gender')
    @classmethod
    def validate_gender(cls, value: str | None) -> str | None:
        return _validate_gender(value)

    @field_validator('blood_type')
    @classmethod
    def validate_blood_type(cls, value: str | None) -> str | None:
        return _validate_blood_type(value)


class AssignDoctorRequest(BaseModel):
    doctor_id: str

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError('Doctor ID is required.')
        return normalized


class PatientResponse(BaseModel):
    id: int
    patient_id: str
    name: str
    age: int
    gender: str
    phone: str
    email: str | None = None
    blood_type: str
    address: dict | None = None
    emergency_contact: dict | None = None
    insurance: dict | None = None
    is_active: bool
    assigned_doctor: DoctorSummaryResponse | None = None

    class Config:
        from_attributes = True


class PatientSummaryResponse(BaseModel):
    id: int
    patient_id: str
    name: str
    age: int
    gender: str

    class Config:
        from_attributes = True


class PatientListResponse(BaseModel):
    patients: list[PatientResponse]
    total_pages: int
    current_page: int
    total: int


class MedicalHistoryResponse(BaseModel):
    medical_history: list[dict]
    allergies: list[dict]
    medications: list[dict]


def get_patient_or_404(patient_id: int, db: Session) -> Patient:
    patient = db.query(Patient).filter(Patient.id == patient_id).first()
    if patient is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Patient not found',
        )
    return patient


def ensure_can_view_patient(patient: Patient, current_user: User, db: Session) -> None:
    if current_user.role == 'patient' and patient.patient_id != current_user.profile_id:
        raise access_denied()

    if current_user.role == 'doctor':
        doctor = require_doctor_profile(current_user, db)
        if patient.assigned_doctor_pk != doctor.id:
            raise access_denied()


def search_patients(query, search: str | None):
    if not search:
        return query
    pattern = f'%{search.strip()}%'
    return query.filter(
        or_(
            Patient.name.ilike(pattern),
            Patient.patient_id.ilike(pattern),
            Patient.phone.ilike(pattern),
        )
    )


@router.get('', response_model=PatientListResponse)
def list_patients(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    search: str | None = Query(default=None),
    sort_by: str = Query(default='name', alias='sortBy'),
    sort_order: str = Query(default='asc', alias='sortOrder'),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        query = search_patients(db.query(Patient).filter(Patient.is_active.is_(True)), search)

        if current_user.role == 'doctor':
            doctor = require_doctor_profile(current_user, db)
            query = query.filter(Patient.assigned_doctor_pk == doctor.id)

        query = apply_sort(query, Patient, sort_by, sort_order, PATIENT_SORT_FIELDS)
        patients, total, total_pages = paginate(query, page, limit)

        return PatientListResponse(
            patients=[PatientResponse.model_validate(patient) for patient in patients],
            total_pages=total_pages,
            current_page=page,
            total=total,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/doctor/{doctor_id}', response_model=PatientListResponse)
def list_patients_by_doctor(
    doctor_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    search: str | None = Query(default=None),
    sort_by: str = Query(default='name', alias='sortBy'),
    sort_order: str = Query(default='asc', alias='sortOrder'),
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        if current_user.role == 'doctor':
            doctor = require_doctor_profile(current_user, db)
            if doctor.id != doctor_id:
                raise access_denied()

        query = db.query(Patient).filter(
            Patient.is_active.is_(True),
            Patient.assigned_doctor_pk == doctor_id,
        )
        query = apply_sort(search_patients(query, search), Patient, sort_by, sort_order, PATIENT_SORT_FIELDS)
        patients, total, total_pages = paginate(query, page, limit)

        return PatientListResponse(
            patients=[PatientResponse.model_validate(patient) for patient in patients],
            total_pages=total_pages,
            current_page=page,
            total=total,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{patient_id}', response_model=PatientResponse)
def get_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        patient = get_patient_or_404(patient_id, db)
        ensure_can_view_patient(patient, current_user, db)

        return patient
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
def create_patient(
    data: CreatePatientRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        patient = Patient(**data.model_dump())
        if current_user.role == 'doctor':
            patient.assigned_doctor_pk = require_doctor_profile(current_user, db).id

        db.add(patient)
        db.flush()
        patient.patient_id = format_display_id(PATIENT_ID_PREFIX, patient.id)
        db.commit()
        db.refresh(patient)
        logger.info('Created patient %s', patient.patient_id)

        return patient
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.put('/{patient_id}', response_model=PatientResponse)
def update_patient(
    patient_id: int,
    data: UpdatePatientRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        patient = get_patient_or_404(patient_id, db)
        ensure_can_view_patient(patient, current_user, db)

        for field_name, value in data.model_dump(exclude_unset=True).items():
            if value is not None:
                setattr(patient, field_name, value)

        db.commit()
        db.refresh(patient)

        return patient
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.delete('/{patient_id}', response_model=MessageResponse)
def delete_patient(
    patient_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    try:
        patient = get_patient_or_404(patient_id, db)
        patient.is_active = False
        db.commit()
        logger.info('Deactivated patient %s', patient.patient_id)

        return MessageResponse(message='Patient deleted successfully')
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.get('/{patient_id}/medical-history', response_model=MedicalHistoryResponse)
def get_medical_history(
    patient_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        patient = get_patient_or_404(patient_id, db)
        ensure_can_view_patient(patient, current_user, db)

        return MedicalHistoryResponse(
            medical_history=patient.medical_history or [],
            allergies=patient.allergies or [],
            medications=patient.medications or [],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('/{patient_id}/assign-doctor', response_model=PatientResponse)
def assign_doctor(
    patient_id: int,
    data: AssignDoctorRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    try:
        patient = get_patient_or_404(patient_id, db)
        doctor = db.query(Doctor).filter(Doctor.doctor_id == data.doctor_id).first()
        if doctor is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail='Doctor not found',
            )

        patient.assigned_doctor_pk = doctor.id
        db.commit()
        db.refresh(patient)
        logger.info('Assigned doctor %s to patient %s', doctor.doctor_id, patient.patient_id)

        return patient
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc

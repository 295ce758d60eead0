import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hms.auth.dependencies import get_current_user, require_roles
from hms.database import format_display_id, get_db
from hms.models.appointment import Appointment
from hms.models.doctor import Doctor
from hms.models.medical_record import RECORD_STATUSES, MedicalRecord
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

router = APIRouter(tags=['medical-records'])

logger = logging.getLogger(__name__)

RECORD_ID_PREFIX = 'MR'
HISTORY_LIMIT = 20
RECORD_SORT_FIELDS = {
    'date': 'date',
    'status': 'status',
    'recordId': 'record_id',
    'record_id': 'record_id',
    'createdAt': 'created_at',
}


class DiagnosisModel(BaseModel):
    primary: str
    secondary: list[str] = Field(default_factory=list)
    icd10_code: str | None = None

    @field_validator('primary')
    @classmethod
    def validate_primary(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Primary diagnosis is required.')
        return normalized


class ClinicalNotesModel(BaseModel):
    subjective: str | None = None
    objective: str | None = None
    assessment: str
    plan: str

    @field_validator('assessment', 'plan')
    @classmethod
    def validate_required_note(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Assessment and treatment plan are required.')
        return normalized


def _validate_status(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized not in RECORD_STATUSES:
        raise ValueError('Valid record status is required.')
    return normalized


class CreateMedicalRecordRequest(BaseModel):
    patient_id: str
    doctor_id: str | None = None
    appointment_id: int | None = None
    diagnosis: DiagnosisModel
    notes: ClinicalNotesModel
    symptoms: list[dict] = Field(default_factory=list)
    vital_signs: dict = Field(default_factory=dict)
    examination: dict = Field(default_factory=dict)
    treatment: dict = Field(default_factory=dict)
    lab_results: list[dict] = Field(default_factory=list)
    imaging: list[dict] = Field(default_factory=list)
    follow_up: dict = Field(default_factory=dict)
    status: str = 'active'
    is_confidential: bool = False

    @field_validator('patient_id')
    @classmethod
    def validate_patient_id(cls, value: str) -> str:
        normalized = value.strip().upper()
        if not normalized:
            raise ValueError('Patient ID is required.')
        return normalized

    @field_validator('doctor_id')
    @classmethod
    def validate_doctor_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().upper() or None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str) -> str:
        return _validate_status(value)


class UpdateMedicalRecordRequest(BaseModel):
    diagnosis: DiagnosisModel | None = None
    notes: ClinicalNotesModel | None = None
    symptoms: list[dict] | None = None
    vital_signs: dict | None = None
    examination: dict | None = None
    treatment: dict | None = None
    lab_results: list[dict] | None = None
    imaging: list[dict] | None = None
    follow_up: dict | None = None
    status: str | None = None
    is_confidential: bool | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        return _validate_status(value)


class MedicalRecordResponse(BaseModel):
    id: int
    record_id: str
    patient: PatientSummaryResponse
    doctor: DoctorSummaryResponse
    appointment_pk: int | None = None
    date: date
    diagnosis: DiagnosisModel
    notes: dict
    symptoms: list[dict]
    vital_signs: dict
    examination: dict
    treatment: dict
    lab_results: list[dict]
    imaging: list[dict]
    follow_up: dict
    status: str
    is_confidential: bool


class MedicalRecordListResponse(BaseModel):
    records: list[MedicalRecordResponse]
    total_pages: int
    current_page: int
    total: int


class PatientHistoryResponse(BaseModel):
    patient: PatientSummaryResponse
    records: list[MedicalRecordResponse]


class DoctorRecordsResponse(BaseModel):
    doctor: DoctorSummaryResponse
    records: list[MedicalRecordResponse]


def serialize_record(record: MedicalRecord) -> MedicalRecordResponse:
    return MedicalRecordResponse(
        id=record.id,
        record_id=record.record_id,
        patient=PatientSummaryResponse.model_validate(record.patient),
        doctor=DoctorSummaryResponse.model_validate(record.doctor),
        appointment_pk=record.appointment_pk,
        date=record.date,
        diagnosis=DiagnosisModel(
            primary=record.diagnosis_primary,
            secondary=record.diagnosis_secondary or [],
            icd10_code=record.icd10_code,
        ),
        notes=record.notes or {},
        symptoms=record.symptoms or [],
        vital_signs=record.vital_signs or {},
        examination=record.examination or {},
        treatment=record.treatment or {},
        lab_results=record.lab_results or [],
        imaging=record.imaging or [],
        follow_up=record.follow_up or {},
        status=record.status,
        is_confidential=bool(record.is_confidential),
    )


def apply_diagnosis(record: MedicalRecord, diagnosis: DiagnosisModel) -> None:
    record.diagnosis_primary = diagnosis.primary
    record.diagnosis_secondary = diagnosis.secondary
    record.icd10_code = diagnosis.icd10_code


def get_record_or_404(record_id: int, db: Session) -> MedicalRecord:
    record = db.query(MedicalRecord).filter(MedicalRecord.id == record_id).first()
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Medical record not found',
        )
    return record


def ensure_can_view_record(record: MedicalRecord, current_user: User, db: Session) -> None:
    if current_user.role == 'patient' and record.patient_pk != require_patient_profile(current_user, db).id:
        raise access_denied()

    if current_user.role == 'doctor' and record.doctor_pk != require_doctor_profile(current_user, db).id:
        raise access_denied()


def resolve_author(data: CreateMedicalRecordRequest, current_user: User, db: Session) -> Doctor:
    if current_user.role == 'doctor':
        return require_doctor_profile(current_user, db)

    if not data.doctor_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Doctor ID is required when an admin creates a record.',
        )

    doctor = db.query(Doctor).filter(Doctor.doctor_id == data.doctor_id).first()
    if doctor is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail='Doctor not found',
        )
    return doctor


@router.get('', response_model=MedicalRecordListResponse)
def list_medical_records(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    patient_id: str | None = Query(default=None),
    doctor_id: str | None = Query(default=None),
    on_date: date | None = Query(default=None, alias='date'),
    record_status: str | None = Query(default=None, alias='status'),
    sort_by: str = Query(default='date', alias='sortBy'),
    sort_order: str = Query(default='desc', alias='sortOrder'),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        query = db.query(MedicalRecord)

        if patient_id:
            query = query.join(Patient, MedicalRecord.patient_pk == Patient.id).filter(
                Patient.patient_id == patient_id.strip().upper()
            )
        if doctor_id:
            query = query.join(Doctor, MedicalRecord.doctor_pk == Doctor.id).filter(
                Doctor.doctor_id == doctor_id.strip().upper()
            )
        if on_date:
            query = query.filter(MedicalRecord.date == on_date)
        if record_status:
            query = query.filter(MedicalRecord.status == record_status.strip().lower())

        if current_user.role == 'patient':
            query = query.filter(MedicalRecord.patient_pk == require_patient_profile(current_user, db).id)
        elif current_user.role == 'doctor':
            query = query.filter(MedicalRecord.doctor_pk == require_doctor_profile(current_user, db).id)

        query = apply_sort(query, MedicalRecord, sort_by, sort_order, RECORD_SORT_FIELDS)
        records, total, total_pages = paginate(query, page, limit)

        return MedicalRecordListResponse(
            records=[serialize_record(record) for record in records],
            total_pages=total_pages,
            current_page=page,
            total=total,
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/patient/{patient_id}', response_model=PatientHistoryResponse)
def get_patient_history(
    patient_id: int,
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

        if current_user.role == 'patient' and patient.patient_id != current_user.profile_id:
            raise access_denied()
        if current_user.role == 'doctor' and patient.assigned_doctor_pk != require_doctor_profile(current_user, db).id:
            raise access_denied()

        records = db.query(MedicalRecord).filter(
            MedicalRecord.patient_pk == patient.id,
        ).order_by(MedicalRecord.date.desc(), MedicalRecord.id.desc()).limit(HISTORY_LIMIT).all()

        return PatientHistoryResponse(
            patient=PatientSummaryResponse.model_validate(patient),
            records=[serialize_record(record) for record in records],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/doctor/{doctor_id}', response_model=DoctorRecordsResponse)
def get_doctor_records(
    doctor_id: int,
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

        if current_user.role == 'doctor' and doctor.doctor_id != current_user.profile_id:
            raise access_denied()

        records = db.query(MedicalRecord).filter(
            MedicalRecord.doctor_pk == doctor.id,
        ).order_by(MedicalRecord.date.desc(), MedicalRecord.id.desc()).limit(HISTORY_LIMIT).all()

        return DoctorRecordsResponse(
            doctor=DoctorSummaryResponse.model_validate(doctor),
            records=[serialize_record(record) for record in records],
        )
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.get('/{record_id}', response_model=MedicalRecordResponse)
def get_medical_record(
    record_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    try:
        record = get_record_or_404(record_id, db)
        ensure_can_view_record(record, current_user, db)

        return serialize_record(record)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc) from exc


@router.post('', response_model=MedicalRecordResponse, status_code=status.HTTP_201_CREATED)
def create_medical_record(
    data: CreateMedicalRecordRequest,
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

        doctor = resolve_author(data, current_user, db)

        if data.appointment_id is not None:
            appointment = db.query(Appointment).filter(Appointment.id == data.appointment_id).first()
            if appointment is None:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail='Appointment not found',
                )

        record = MedicalRecord(
            patient_pk=patient.id,
            doctor_pk=doctor.id,
            appointment_pk=data.appointment_id,
            date=date.today(),
            notes=data.notes.model_dump(),
            symptoms=data.symptoms,
            vital_signs=data.vital_signs,
            examination=data.examination,
            treatment=data.treatment,
            lab_results=data.lab_results,
            imaging=data.imaging,
            follow_up=data.follow_up,
            status=data.status,
            is_confidential=data.is_confidential,
        )
        apply_diagnosis(record, data.diagnosis)

        db.add(record)
        db.flush()
        record.record_id = format_display_id(RECORD_ID_PREFIX, record.id)
        db.commit()
        db.refresh(record)
        logger.info('Created medical record %s for patient %s', record.record_id, patient.patient_id)

        return serialize_record(record)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.put('/{record_id}', response_model=MedicalRecordResponse)
def update_medical_record(
    record_id: int,
    data: UpdateMedicalRecordRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin', 'doctor')),
):
    try:
        record = get_record_or_404(record_id, db)
        if current_user.role == 'doctor' and record.doctor_pk != require_doctor_profile(current_user, db).id:
            raise access_denied()

        changes = data.model_dump(exclude_unset=True)
        if changes.pop('diagnosis', None) is not None:
            apply_diagnosis(record, data.diagnosis)
        for field_name, value in changes.items():
            if value is not None:
                setattr(record, field_name, value)

        db.commit()
        db.refresh(record)

        return serialize_record(record)
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc


@router.delete('/{record_id}', response_model=MessageResponse)
def delete_medical_record(
    record_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_roles('admin')),
):
    try:
        record = get_record_or_404(record_id, db)
        db.delete(record)
        db.commit()
        logger.info('Deleted medical record %s', record.record_id)

        return MessageResponse(message='Medical record deleted successfully')
    except SQLAlchemyError as exc:
        raise database_unavailable(exc, db) from exc

"""Medical record model definitions."""

from sqlalchemy import JSON, Boolean, Column, Date, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from hms.database import Base

RECORD_STATUSES = ('active', 'resolved', 'chronic', 'follow-up')


class MedicalRecord(Base):
    """A doctor's clinical note for one patient encounter."""
    __tablename__ = "medical_records"

    id = Column(Integer, primary_key=True)
    record_id = Column(String, unique=True, index=True)
    patient_pk = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_pk = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    appointment_pk = Column(Integer, ForeignKey("appointments.id"))
    date = Column(Date, nullable=False, index=True)
    diagnosis_primary = Column(String, nullable=False, index=True)
    diagnosis_secondary = Column(JSON, default=list)
    icd10_code = Column(String)
    symptoms = Column(JSON, default=list)
    vital_signs = Column(JSON, default=dict)
    examination = Column(JSON, default=dict)
    treatment = Column(JSON, default=dict)
    lab_results = Column(JSON, default=list)
    imaging = Column(JSON, default=list)
    notes = Column(JSON, default=dict)  # subjective/objective/assessment/plan
    follow_up = Column(JSON, default=dict)
    status = Column(String, default='active', nullable=False)
    is_confidential = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient")
    doctor = relationship("Doctor")
    appointment = relationship("Appointment")

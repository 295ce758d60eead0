"""Patient model definitions."""

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import relationship

from hms.database import Base

GENDERS = ('male', 'female', 'other')
BLOOD_TYPES = ('A+', 'A-', 'B+', 'B-', 'AB+', 'AB-', 'O+', 'O-')


class Patient(Base):
    """Represents a registered patient."""
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True)
    patient_id = Column(String, unique=True, index=True)
    name = Column(String, nullable=False, index=True)
    age = Column(Integer, nullable=False)
    gender = Column(String, nullable=False)
    phone = Column(String, nullable=False)
    email = Column(String)
    address = Column(JSON, default=dict)
    blood_type = Column(String, nullable=False)
    emergency_contact = Column(JSON, default=dict)
    medical_history = Column(JSON, default=list)
    allergies = Column(JSON, default=list)
    medications = Column(JSON, default=list)
    insurance = Column(JSON, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)
    assigned_doctor_pk = Column(Integer, ForeignKey("doctors.id"), index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    assigned_doctor = relationship("Doctor")

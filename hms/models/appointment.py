"""Appointment model definitions."""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import relationship

from hms.database import Base

APPOINTMENT_STATUSES = ('scheduled', 'confirmed', 'in-progress', 'completed', 'cancelled', 'no-show')
APPOINTMENT_TYPES = ('consultation', 'follow-up', 'emergency', 'routine', 'specialist')
PRIORITIES = ('low', 'medium', 'high', 'urgent')
PAYMENT_STATUSES = ('pending', 'paid', 'partial', 'waived')

DEFAULT_DURATION_MINUTES = 30
MIN_DURATION_MINUTES = 15
MAX_DURATION_MINUTES = 120


class Appointment(Base):
    """Represents a booked appointment between a patient and a doctor."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_doctor_date", "doctor_pk", "date"),
    )

    id = Column(Integer, primary_key=True)
    appointment_id = Column(String, unique=True, index=True)
    patient_pk = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    doctor_pk = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    time = Column(String(5), nullable=False)  # "HH:MM", 24-hour
    duration = Column(Integer, default=DEFAULT_DURATION_MINUTES, nullable=False)
    reason = Column(String, nullable=False)
    status = Column(String, default='scheduled', nullable=False, index=True)
    type = Column(String, default='consultation', nullable=False)
    notes = Column(String)
    symptoms = Column(JSON, default=list)
    priority = Column(String, default='medium', nullable=False)
    fee = Column(Float, nullable=False)
    payment_status = Column(String, default='pending', nullable=False)
    reminder_sent = Column(Boolean, default=False, nullable=False)
    cancellation_reason = Column(String)
    cancelled_by = Column(String)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient")
    doctor = relationship("Doctor")

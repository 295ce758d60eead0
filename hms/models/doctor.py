"""Doctor model definitions."""

from datetime import date

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    func,
)
from sqlalchemy.orm import relationship

from hms.database import Base
from hms.scheduling.availability import is_doctor_available


class Doctor(Base):
    """Represents a doctor together with their weekly availability."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(String, unique=True, index=True)
    name = Column(String, nullable=False, index=True)
    specialization = Column(String, nullable=False, index=True)
    qualifications = Column(JSON, default=list)
    phone = Column(String, nullable=False)
    email = Column(String, nullable=False)
    address = Column(JSON, default=dict)
    consultation_fee = Column(Float, nullable=False)
    experience_years = Column(Integer)
    experience_description = Column(String)
    languages = Column(JSON, default=list)
    is_on_leave = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    schedule = relationship(
        "ScheduleEntry",
        back_populates="doctor",
        cascade="all, delete-orphan",
        order_by="ScheduleEntry.id",
    )
    leave_dates = relationship(
        "LeaveRange",
        back_populates="doctor",
        cascade="all, delete-orphan",
        order_by="LeaveRange.start_date",
    )

    def is_available(self, on_date: date, at_time: str) -> bool:
        return is_doctor_available(self, on_date, at_time)


class ScheduleEntry(Base):
    """One day of a doctor's recurring weekly schedule."""
    __tablename__ = "doctor_schedule"

    id = Column(Integer, primary_key=True)
    doctor_pk = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    day_of_week = Column(String, nullable=False)
    start_time = Column(String, nullable=False)
    end_time = Column(String, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    doctor = relationship("Doctor", back_populates="schedule")


class LeaveRange(Base):
    """Inclusive date range during which a doctor takes no bookings."""
    __tablename__ = "doctor_leave"

    id = Column(Integer, primary_key=True)
    doctor_pk = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(String)

    doctor = relationship("Doctor", back_populates="leave_dates")

"""User model definitions."""

from sqlalchemy import Boolean, Column, DateTime, Integer, String, func
from hms.database import Base

ROLES = ('admin', 'doctor', 'patient')


class User(Base):
    """Represents an account that can sign in to the API."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=False)
    phone = Column(String)
    role = Column(String, nullable=False)  # admin/doctor/patient
    # Display ID of the linked doctor or patient profile (D00001 / P00001).
    profile_id = Column(String, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

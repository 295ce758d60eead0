import os
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-that-is-long-enough-for-hs256')

from hms.database import Base, format_display_id  # noqa: E402
from hms.models.appointment import Appointment  # noqa: E402
from hms.models.doctor import Doctor, LeaveRange, ScheduleEntry  # noqa: E402
from hms.models.medical_record import MedicalRecord  # noqa: E402, F401
from hms.models.patient import Patient  # noqa: E402
from hms.models.user import User  # noqa: E402

WEEKDAYS = ('monday', 'tuesday', 'wednesday', 'thursday', 'friday')


@pytest.fixture
def db_session():
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_doctor(db_session):
    def _make_doctor(
        name: str = 'Dr. John Smith',
        days=WEEKDAYS,
        start_time: str = '09:00',
        end_time: str = '17:00',
        is_on_leave: bool = False,
        leave_dates=(),
    ) -> Doctor:
        doctor = Doctor(
            name=name,
            specialization='Cardiology',
            phone='+1234567891',
            email='john.smith@hms.com',
            consultation_fee=150.0,
            is_on_leave=is_on_leave,
        )
        doctor.schedule = [
            ScheduleEntry(day_of_week=day, start_time=start_time, end_time=end_time, is_available=True)
            for day in days
        ]
        doctor.leave_dates = [
            LeaveRange(start_date=start_date, end_date=end_date, reason='Conference')
            for start_date, end_date in leave_dates
        ]
        db_session.add(doctor)
        db_session.flush()
        doctor.doctor_id = format_display_id('D', doctor.id)
        db_session.commit()
        db_session.refresh(doctor)
        return doctor

    return _make_doctor


@pytest.fixture
def make_patient(db_session):
    def _make_patient(name: str = 'John Doe', assigned_doctor: Doctor | None = None) -> Patient:
        patient = Patient(
            name=name,
            age=35,
            gender='male',
            phone='+1234567893',
            blood_type='A+',
            assigned_doctor_pk=assigned_doctor.id if assigned_doctor else None,
        )
        db_session.add(patient)
        db_session.flush()
        patient.patient_id = format_display_id('P', patient.id)
        db_session.commit()
        db_session.refresh(patient)
        return patient

    return _make_patient


@pytest.fixture
def make_user(db_session):
    def _make_user(role: str = 'admin', email: str | None = None, profile_id: str | None = None) -> User:
        user = User(
            email=email or f'{role}@hms.com',
            hashed_password='not-a-real-hash',
            name=f'Test {role}',
            role=role,
            profile_id=profile_id,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_appointment(db_session):
    def _make_appointment(
        doctor: Doctor,
        patient: Patient,
        on_date: date,
        at_time: str,
        duration: int = 30,
        status: str = 'scheduled',
    ) -> Appointment:
        appointment = Appointment(
            doctor_pk=doctor.id,
            patient_pk=patient.id,
            date=on_date,
            time=at_time,
            duration=duration,
            reason='Checkup',
            fee=150.0,
            status=status,
        )
        db_session.add(appointment)
        db_session.flush()
        appointment.appointment_id = format_display_id('A', appointment.id)
        db_session.commit()
        db_session.refresh(appointment)
        return appointment

    return _make_appointment

import os
from datetime import date, time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')

from clinic_backend.database import Base  # noqa: E402
from clinic_backend.models import appointment, reminder, user  # noqa: E402,F401
from clinic_backend.models.doctor import Doctor  # noqa: E402
from clinic_backend.models.patient import Patient  # noqa: E402
from clinic_backend.models.schedule import DoctorSchedule  # noqa: E402

CLINIC_DAY = date(2030, 1, 7)


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def doctor(db) -> Doctor:
    doctor = Doctor(name='Dr. Rivera', specialty='Cardiology', email='rivera@clinic.test')
    db.add(doctor)
    db.commit()
    db.refresh(doctor)
    return doctor


@pytest.fixture
def patient(db) -> Patient:
    patient = Patient(name='Sam Lee', email='sam@example.test')
    db.add(patient)
    db.commit()
    db.refresh(patient)
    return patient


@pytest.fixture
def add_window(db, doctor):
    def _add_window(start: time, end: time, day: date = CLINIC_DAY, is_available: bool = True) -> DoctorSchedule:
        window = DoctorSchedule(
            doctor_id=doctor.id,
            date=day,
            start_time=start,
            end_time=end,
            is_available=is_available,
        )
        db.add(window)
        db.commit()
        return window

    return _add_window


@pytest.fixture
def add_appointment(db, doctor, patient):
    def _add_appointment(start, duration_minutes: int = 30, status=appointment.AppointmentStatus.PENDING, doctor_id=None):
        booked = appointment.Appointment(
            doctor_id=doctor_id or doctor.id,
            patient_id=patient.id,
            start_time=start,
            duration_minutes=duration_minutes,
            status=status,
        )
        db.add(booked)
        db.commit()
        db.refresh(booked)
        return booked

    return _add_appointment

from datetime import date

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import require_role
from clinic_backend.database import get_db
from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.models.doctor import Doctor
from clinic_backend.models.patient import Patient
from clinic_backend.models.schedule import DoctorSchedule
from clinic_backend.models.user import ADMIN_ROLE, User
from clinic_backend.routes.errors import database_unavailable, to_http_exception
from clinic_backend.scheduling.errors import SchedulingError
from clinic_backend.scheduling.ledger import BookingLedger
from clinic_backend.scheduling.repository import ScheduleRepository

router = APIRouter(tags=['admin'])


def _normalize_email(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    return normalized or None


class CreateDoctorRequest(BaseModel):
    name: str
    specialty: str | None = None
    email: str | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return _normalize_email(value)


class DoctorResponse(BaseModel):
    id: int
    name: str
    specialty: str | None = None
    email: str | None = None

    class Config:
        from_attributes = True


class CreatePatientRequest(BaseModel):
    name: str
    email: str | None = None
    phone_number: str | None = None
    date_of_birth: date | None = None

    @field_validator('email')
    @classmethod
    def validate_email(cls, value: str | None) -> str | None:
        return _normalize_email(value)


class PatientResponse(BaseModel):
    id: int
    name: str
    email: str | None = None
    phone_number: str | None = None
    date_of_birth: date | None = None

    class Config:
        from_attributes = True


def delete_cancelled_appointments(db: Session, owner_filter) -> None:
    db.query(Appointment).filter(
        owner_filter,
        Appointment.status == AppointmentStatus.CANCELLED,
    ).delete(synchronize_session=False)


@router.post('/doctors', response_model=DoctorResponse, status_code=status.HTTP_201_CREATED)
def create_doctor(
    data: CreateDoctorRequest,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        doctor = Doctor(name=data.name.strip(), specialty=data.specialty, email=data.email)
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/patients', response_model=PatientResponse, status_code=status.HTTP_201_CREATED)
def create_patient(
    data: CreatePatientRequest,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        patient = Patient(
            name=data.name.strip(),
            email=data.email,
            phone_number=data.phone_number,
            date_of_birth=data.date_of_birth,
        )
        db.add(patient)
        db.commit()
        db.refresh(patient)
        return patient
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/doctors/{doctor_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_doctor(
    doctor_id: int,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    repository = ScheduleRepository(db)

    try:
        BookingLedger(repository).ensure_deletable_doctor(doctor_id)
        delete_cancelled_appointments(db, Appointment.doctor_id == doctor_id)
        db.query(DoctorSchedule).filter(DoctorSchedule.doctor_id == doctor_id).delete(synchronize_session=False)
        db.query(User).filter(User.doctor_id == doctor_id).delete(synchronize_session=False)
        db.delete(repository.get_doctor(doctor_id))
        db.commit()
    except SchedulingError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/patients/{patient_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_patient(
    patient_id: int,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    repository = ScheduleRepository(db)

    try:
        BookingLedger(repository).ensure_deletable_patient(patient_id)
        delete_cancelled_appointments(db, Appointment.patient_id == patient_id)
        db.query(User).filter(User.patient_id == patient_id).delete(synchronize_session=False)
        db.delete(repository.get_patient(patient_id))
        db.commit()
    except SchedulingError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

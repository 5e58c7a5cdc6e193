from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user, is_admin, is_doctor, is_patient, require_role
from clinic_backend.core import config
from clinic_backend.database import get_db
from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.models.user import ADMIN_ROLE, DOCTOR_ROLE, PATIENT_ROLE, User
from clinic_backend.routes.errors import database_unavailable, to_http_exception
from clinic_backend.scheduling.errors import SchedulingError
from clinic_backend.scheduling.ledger import BookingLedger
from clinic_backend.scheduling.repository import ScheduleRepository
from clinic_backend.scheduling.resolver import AvailabilityResolver

router = APIRouter(tags=['appointments'])


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    patient_id: int | None = None
    start_time: datetime
    duration_minutes: int
    notes: str | None = None
    status: AppointmentStatus = AppointmentStatus.PENDING

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            raise ValueError('Start time must be a local clinic time without a timezone offset.')
        return value

    @field_validator('duration_minutes')
    @classmethod
    def validate_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Duration must be a positive number of minutes.')
        return value

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > config.MAX_APPOINTMENT_NOTES_LENGTH:
            raise ValueError(f'Notes must be {config.MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

        return normalized


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    status: AppointmentStatus
    notes: str | None = None

    class Config:
        from_attributes = True


def build_ledger(db: Session) -> BookingLedger:
    return BookingLedger(ScheduleRepository(db))


def resolve_booking_patient(data: CreateAppointmentRequest, current_user: User) -> int:
    if is_admin(current_user):
        if data.patient_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='patient_id is required when booking on behalf of a patient.',
            )
        return data.patient_id

    if not is_patient(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only patients and admins can book appointments.',
        )
    if data.patient_id is not None and data.patient_id != current_user.patient_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Patients can only book appointments for themselves.',
        )
    if data.status != AppointmentStatus.PENDING:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only admins can create confirmed appointments.',
        )
    return current_user.patient_id


@router.get('/slots', response_model=list[str])
def list_available_slots(
    doctor_id: int = Query(...),
    day: date = Query(..., alias='date'),
    duration: int = Query(..., gt=0),
    db: Session = Depends(get_db),
):
    try:
        return AvailabilityResolver(ScheduleRepository(db)).slot_labels(doctor_id, day, duration)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/mine', response_model=list[AppointmentResponse])
def list_my_appointments(
    current_user: User = Depends(require_role(PATIENT_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        return db.query(Appointment).filter(
            Appointment.patient_id == current_user.patient_id,
        ).order_by(Appointment.start_time.asc()).all()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(require_role(PATIENT_ROLE, ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    patient_id = resolve_booking_patient(data, current_user)

    try:
        return build_ledger(db).commit(
            doctor_id=data.doctor_id,
            patient_id=patient_id,
            start_time=data.start_time,
            duration_minutes=data.duration_minutes,
            notes=data.notes,
            initial_status=data.status,
        )
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        return build_ledger(db).confirm(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ledger = build_ledger(db)

    try:
        if is_admin(current_user):
            return ledger.cancel_by_admin(appointment_id)
        if is_patient(current_user):
            return ledger.cancel_by_patient(appointment_id, current_user.patient_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only the patient who booked this appointment or an admin can cancel it.',
    )


@router.post('/{appointment_id}/complete', response_model=AppointmentResponse)
def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(require_role(DOCTOR_ROLE, ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    ledger = build_ledger(db)

    try:
        if not is_admin(current_user):
            appointment = ledger.repository.get_appointment(appointment_id)
            if not is_doctor(current_user) or appointment.doctor_id != current_user.doctor_id:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail='Unauthorized to update this appointment.',
                )
        return ledger.complete(appointment_id)
    except SchedulingError as exc:
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc

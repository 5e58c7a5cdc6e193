"""Authoritative write path for appointments.

Every commit re-reads the doctor's bookings for the day while holding the
per-doctor-per-day booking lock and a row lock on the doctor, so two requests
racing for overlapping times cannot both pass the conflict check.
"""

import logging
from datetime import date, datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.database import hold_booking_lock
from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.scheduling.errors import (
    ActiveAppointmentsExist,
    InvalidTransition,
    SlotConflict,
    UnknownEntity,
)
from clinic_backend.scheduling.intervals import find_conflicts
from clinic_backend.scheduling.repository import ScheduleRepository

logger = logging.getLogger(__name__)

ENTRY_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class BookingLedger:
    def __init__(self, repository: ScheduleRepository):
        self.repository = repository
        self.db = repository.db

    def commit(
        self,
        doctor_id: int,
        patient_id: int,
        start_time: datetime,
        duration_minutes: int,
        notes: str | None = None,
        initial_status: AppointmentStatus = AppointmentStatus.PENDING,
    ) -> Appointment:
        if duration_minutes <= 0:
            raise ValueError('Appointment duration must be a positive number of minutes.')
        if start_time.tzinfo is not None:
            raise ValueError('Appointment start time must be a naive local clinic time.')
        if initial_status not in ENTRY_STATUSES:
            raise InvalidTransition(
                None,
                initial_status,
                reason=f'Appointments cannot be created with status {initial_status}.',
            )

        start_time = start_time.replace(second=0, microsecond=0)
        end_time = start_time + timedelta(minutes=duration_minutes)

        with hold_booking_lock(doctor_id, start_time.date()):
            try:
                self.repository.lock_doctor(doctor_id)
                self.repository.get_patient(patient_id)

                booked = self.repository.booked_intervals_for(doctor_id, start_time.date())
                conflicts = find_conflicts(start_time, end_time, booked)
                if conflicts:
                    raise SlotConflict(doctor_id, [interval.appointment_id for interval in conflicts])

                appointment = self.repository.insert_appointment(
                    doctor_id=doctor_id,
                    patient_id=patient_id,
                    start_time=start_time,
                    duration_minutes=duration_minutes,
                    status=initial_status,
                    notes=notes,
                )
                self.db.commit()
            except SlotConflict as exc:
                self.db.rollback()
                logger.info(
                    'Rejected booking for doctor %s at %s: overlaps appointments %s',
                    doctor_id, start_time, exc.conflicting_ids,
                )
                raise
            except Exception:
                self.db.rollback()
                raise

        self.db.refresh(appointment)
        logger.info(
            'Booked appointment %s for doctor %s at %s (%d min, %s)',
            appointment.id, doctor_id, start_time, duration_minutes, initial_status,
        )
        return appointment

    def _transition(self, appointment: Appointment, target: AppointmentStatus) -> Appointment:
        current = appointment.status
        if not can_transition(current, target):
            raise InvalidTransition(current, target)

        try:
            self.repository.update_status(appointment, target)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise

        self.db.refresh(appointment)
        logger.info('Appointment %s moved from %s to %s', appointment.id, current, target)
        return appointment

    def confirm(self, appointment_id: int) -> Appointment:
        """Mark a pending appointment as paid."""
        appointment = self.repository.get_appointment(appointment_id)
        return self._transition(appointment, AppointmentStatus.CONFIRMED)

    def complete(self, appointment_id: int) -> Appointment:
        appointment = self.repository.get_appointment(appointment_id)
        return self._transition(appointment, AppointmentStatus.COMPLETED)

    def cancel_by_patient(self, appointment_id: int, patient_id: int, today: date | None = None) -> Appointment:
        """Self-service cancellation: only the owner, only while pending, never in the past."""
        appointment = self.repository.get_appointment(appointment_id)
        if appointment.patient_id != patient_id:
            raise UnknownEntity('appointment', appointment_id)

        today = today or date.today()
        if appointment.start_time.date() < today:
            raise InvalidTransition(
                appointment.status,
                AppointmentStatus.CANCELLED,
                reason='Cannot cancel past appointments.',
            )

        if appointment.status == AppointmentStatus.CANCELLED:
            raise InvalidTransition(
                appointment.status,
                AppointmentStatus.CANCELLED,
                reason='Appointment is already cancelled.',
            )
        if appointment.status != AppointmentStatus.PENDING:
            raise InvalidTransition(
                appointment.status,
                AppointmentStatus.CANCELLED,
                reason='Only pending appointments can be cancelled. Please contact the clinic.',
            )

        return self._transition(appointment, AppointmentStatus.CANCELLED)

    def cancel_by_admin(self, appointment_id: int) -> Appointment:
        appointment = self.repository.get_appointment(appointment_id)
        return self._transition(appointment, AppointmentStatus.CANCELLED)

    def ensure_deletable_doctor(self, doctor_id: int) -> None:
        self.repository.get_doctor(doctor_id)
        if self.repository.has_active_appointments(doctor_id=doctor_id):
            raise ActiveAppointmentsExist('doctor', doctor_id)

    def ensure_deletable_patient(self, patient_id: int) -> None:
        self.repository.get_patient(patient_id)
        if self.repository.has_active_appointments(patient_id=patient_id):
            raise ActiveAppointmentsExist('patient', patient_id)

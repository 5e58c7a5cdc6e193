from datetime import date, datetime, time, timedelta

from sqlalchemy.orm import Session

from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.models.doctor import Doctor
from clinic_backend.models.patient import Patient
from clinic_backend.models.schedule import DoctorSchedule, check_window_bounds
from clinic_backend.scheduling.errors import UnknownEntity
from clinic_backend.scheduling.intervals import BookedInterval


def day_bounds(day: date) -> tuple[datetime, datetime]:
    day_start = datetime.combine(day, time.min)
    return day_start, day_start + timedelta(days=1)


class ScheduleRepository:
    """Reads and writes doctor schedules and appointments through one SQLAlchemy session."""

    def __init__(self, db: Session):
        self.db = db

    def get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.get(Doctor, doctor_id)
        if doctor is None:
            raise UnknownEntity('doctor', doctor_id)
        return doctor

    def get_patient(self, patient_id: int) -> Patient:
        patient = self.db.get(Patient, patient_id)
        if patient is None:
            raise UnknownEntity('patient', patient_id)
        return patient

    def get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            raise UnknownEntity('appointment', appointment_id)
        return appointment

    def lock_doctor(self, doctor_id: int) -> Doctor:
        # Row lock for engines that support SELECT ... FOR UPDATE; SQLite ignores it.
        doctor = self.db.query(Doctor).filter(Doctor.id == doctor_id).with_for_update().first()
        if doctor is None:
            raise UnknownEntity('doctor', doctor_id)
        return doctor

    def windows_for(self, doctor_id: int, day: date, available_only: bool = True) -> list[DoctorSchedule]:
        query = self.db.query(DoctorSchedule).filter(
            DoctorSchedule.doctor_id == doctor_id,
            DoctorSchedule.date == day,
        )
        if available_only:
            query = query.filter(DoctorSchedule.is_available.is_(True))
        return query.order_by(DoctorSchedule.start_time.asc(), DoctorSchedule.id.asc()).all()

    def booked_intervals_for(self, doctor_id: int, day: date) -> list[BookedInterval]:
        day_start, day_end = day_bounds(day)
        appointments = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.start_time >= day_start,
            Appointment.start_time < day_end,
            Appointment.status != AppointmentStatus.CANCELLED,
        ).order_by(Appointment.start_time.asc()).all()

        return [
            BookedInterval(
                appointment_id=appointment.id,
                doctor_id=appointment.doctor_id,
                start=appointment.start_time,
                duration_minutes=appointment.duration_minutes,
                status=appointment.status,
            )
            for appointment in appointments
        ]

    def has_active_appointments(self, doctor_id: int | None = None, patient_id: int | None = None) -> bool:
        query = self.db.query(Appointment.id).filter(Appointment.status != AppointmentStatus.CANCELLED)
        if doctor_id is not None:
            query = query.filter(Appointment.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(Appointment.patient_id == patient_id)
        return query.first() is not None

    def insert_appointment(
        self,
        doctor_id: int,
        patient_id: int,
        start_time: datetime,
        duration_minutes: int,
        status: AppointmentStatus,
        notes: str | None,
    ) -> Appointment:
        appointment = Appointment(
            doctor_id=doctor_id,
            patient_id=patient_id,
            start_time=start_time,
            duration_minutes=duration_minutes,
            status=status,
            notes=notes,
        )
        self.db.add(appointment)
        self.db.flush()
        return appointment

    def update_status(self, appointment: Appointment, status: AppointmentStatus) -> Appointment:
        appointment.status = status
        self.db.flush()
        return appointment

    def add_window(
        self,
        doctor_id: int,
        day: date,
        start_time: time,
        end_time: time,
        is_available: bool = True,
    ) -> DoctorSchedule:
        self.get_doctor(doctor_id)
        window = DoctorSchedule(
            doctor_id=doctor_id,
            date=day,
            start_time=start_time,
            end_time=end_time,
            is_available=is_available,
        )
        self.db.add(window)
        self.db.flush()
        return window

    def get_window(self, window_id: int) -> DoctorSchedule:
        window = self.db.get(DoctorSchedule, window_id)
        if window is None:
            raise UnknownEntity('schedule', window_id)
        return window

    def update_window(
        self,
        window: DoctorSchedule,
        day: date,
        start_time: time,
        end_time: time,
        is_available: bool,
    ) -> DoctorSchedule:
        check_window_bounds(start_time, end_time)
        window.date = day
        window.start_time = start_time
        window.end_time = end_time
        window.is_available = is_available
        self.db.flush()
        return window

    def delete_window(self, window: DoctorSchedule) -> None:
        self.db.delete(window)
        self.db.flush()

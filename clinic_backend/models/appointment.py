"""Appointment model definitions."""

import enum
from datetime import datetime, timedelta

from sqlalchemy import Column, DateTime, Enum, ForeignKey, Index, Integer, String
from clinic_backend.database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"

    def __str__(self) -> str:
        return self.value


class Appointment(Base):
    """Represents a booked appointment against a doctor's calendar."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_doctor_start", "doctor_id", "start_time"),
    )

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)
    start_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(
        Enum(AppointmentStatus, values_callable=lambda statuses: [status.value for status in statuses]),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    notes = Column(String)
    created_at = Column(DateTime, default=datetime.now)

    @property
    def end_time(self) -> datetime:
        return self.start_time + timedelta(minutes=self.duration_minutes)

"""Reminder idempotency marker definitions."""

from sqlalchemy import Column, DateTime, Integer
from clinic_backend.database import Base


class ReminderMarker(Base):
    """Records that a reminder was sent for an appointment, valid until expires_at."""
    __tablename__ = "reminder_markers"

    appointment_id = Column(Integer, primary_key=True)
    expires_at = Column(DateTime, nullable=False, index=True)

"""Doctor schedule (availability window) model definitions."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, Time
from clinic_backend.database import Base
from clinic_backend.scheduling.errors import InvalidWindow


def check_window_bounds(start_time, end_time) -> None:
    if start_time is None or end_time is None:
        raise ValueError("Start time and end time are required.")
    if start_time >= end_time:
        raise InvalidWindow(start_time, end_time)


class DoctorSchedule(Base):
    """Represents a window of a day during which a doctor accepts bookings."""
    __tablename__ = "doctor_schedules"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)

    def __init__(self, **kwargs):
        check_window_bounds(kwargs.get("start_time"), kwargs.get("end_time"))
        kwargs.setdefault("is_available", True)
        super().__init__(**kwargs)

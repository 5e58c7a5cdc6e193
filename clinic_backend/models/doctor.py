"""Doctor model definitions."""

from sqlalchemy import Column, Integer, String
from clinic_backend.database import Base


class Doctor(Base):
    """Represents a doctor who publishes schedules and receives bookings."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    specialty = Column(String)
    email = Column(String, unique=True, index=True)

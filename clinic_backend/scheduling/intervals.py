"""Half-open interval arithmetic shared by slot generation and booking checks."""

from dataclasses import dataclass
from datetime import datetime, time, timedelta

from clinic_backend.models.appointment import AppointmentStatus


def overlaps(a_start, a_end, b_start, b_end) -> bool:
    """Return True when [a_start, a_end) and [b_start, b_end) share any instant.

    Ranges that only touch (one ends exactly where the other begins) do not overlap.
    """
    return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class BookedInterval:
    appointment_id: int
    doctor_id: int
    start: datetime
    duration_minutes: int
    status: AppointmentStatus

    @property
    def end(self) -> datetime:
        return self.start + timedelta(minutes=self.duration_minutes)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return overlaps(start, end, self.start, self.end)


@dataclass(frozen=True)
class Slot:
    start: time
    end: time

    @property
    def label(self) -> str:
        return f"{self.start:%H:%M} - {self.end:%H:%M}"

    def __str__(self) -> str:
        return self.label


def find_conflicts(start: datetime, end: datetime, booked: list[BookedInterval]) -> list[BookedInterval]:
    return [interval for interval in booked if interval.overlaps(start, end)]

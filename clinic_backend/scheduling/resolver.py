"""Computes the bookable slots of a doctor for one day."""

import logging
from datetime import date, datetime, timedelta

from clinic_backend.core import config
from clinic_backend.scheduling.intervals import Slot, find_conflicts
from clinic_backend.scheduling.repository import ScheduleRepository

logger = logging.getLogger(__name__)


class AvailabilityResolver:
    def __init__(self, repository: ScheduleRepository, stride_minutes: int | None = None):
        self.repository = repository
        if stride_minutes is None:
            stride_minutes = config.SLOT_STRIDE_MINUTES
        if stride_minutes <= 0:
            raise ValueError('Slot stride must be a positive number of minutes.')
        self.stride_minutes = stride_minutes

    def compute_slots(self, doctor_id: int, day: date, duration_minutes: int) -> list[Slot]:
        """Return every slot of `duration_minutes` that fits a window and clears all bookings.

        Each available window is scanned on its own from its start time in fixed
        stride steps, so overlapping windows may offer the same slot twice and long
        durations produce overlapping offers. An unknown doctor or a day without
        windows yields an empty list.
        """
        if duration_minutes <= 0:
            raise ValueError('Slot duration must be a positive number of minutes.')

        windows = self.repository.windows_for(doctor_id, day)
        if not windows:
            return []

        booked = self.repository.booked_intervals_for(doctor_id, day)
        duration = timedelta(minutes=duration_minutes)
        stride = timedelta(minutes=self.stride_minutes)

        slots: list[Slot] = []
        for window in windows:
            current = datetime.combine(day, window.start_time)
            window_end = datetime.combine(day, window.end_time)

            while current + duration <= window_end:
                slot_end = current + duration
                if not find_conflicts(current, slot_end, booked):
                    slots.append(Slot(start=current.time(), end=slot_end.time()))
                current += stride

        logger.debug(
            'Resolved %d slots for doctor %s on %s (%d min, %d windows, %d bookings)',
            len(slots), doctor_id, day, duration_minutes, len(windows), len(booked),
        )
        return slots

    def slot_labels(self, doctor_id: int, day: date, duration_minutes: int) -> list[str]:
        return [slot.label for slot in self.compute_slots(doctor_id, day, duration_minutes)]

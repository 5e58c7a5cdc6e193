"""Appointment reminders for confirmed bookings starting soon."""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.models.reminder import ReminderMarker

logger = logging.getLogger(__name__)

ReminderSender = Callable[[Appointment], None]


class ReminderMarkerStore:
    """Keyed idempotency markers with a fixed time-to-live, stored in the database."""

    def __init__(self, db: Session, ttl: timedelta | None = None):
        self.db = db
        self.ttl = ttl or timedelta(hours=config.REMINDER_MARKER_TTL_HOURS)

    def is_marked(self, appointment_id: int, now: datetime) -> bool:
        marker = self.db.get(ReminderMarker, appointment_id)
        return marker is not None and marker.expires_at > now

    def mark(self, appointment_id: int, now: datetime) -> None:
        marker = self.db.get(ReminderMarker, appointment_id)
        if marker is None:
            marker = ReminderMarker(appointment_id=appointment_id)
            self.db.add(marker)
        marker.expires_at = now + self.ttl

    def purge_expired(self, now: datetime) -> int:
        return self.db.query(ReminderMarker).filter(ReminderMarker.expires_at <= now).delete()


def log_reminder(appointment: Appointment) -> None:
    logger.info(
        'Reminder: appointment %s with doctor %s at %s',
        appointment.id, appointment.doctor_id, appointment.start_time,
    )


def find_due_appointments(db: Session, now: datetime, lookahead: timedelta) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.status == AppointmentStatus.CONFIRMED,
        Appointment.start_time >= now,
        Appointment.start_time <= now + lookahead,
    ).order_by(Appointment.start_time.asc()).all()


def send_due_reminders(
    db: Session,
    sender: ReminderSender = log_reminder,
    markers: ReminderMarkerStore | None = None,
    now: datetime | None = None,
    lookahead: timedelta | None = None,
) -> list[int]:
    """Send one reminder per confirmed appointment inside the look-ahead window.

    Returns the ids of the appointments reminded during this pass. A failing
    sender aborts the pass; markers already written for earlier appointments
    are kept so they are not reminded twice.
    """
    now = now or datetime.now()
    lookahead = lookahead or timedelta(hours=config.REMINDER_LOOKAHEAD_HOURS)
    markers = markers or ReminderMarkerStore(db)

    markers.purge_expired(now)
    reminded: list[int] = []
    try:
        for appointment in find_due_appointments(db, now, lookahead):
            if markers.is_marked(appointment.id, now):
                continue
            sender(appointment)
            markers.mark(appointment.id, now)
            reminded.append(appointment.id)
    finally:
        db.commit()

    logger.info('Reminder pass at %s sent %d reminders', now, len(reminded))
    return reminded

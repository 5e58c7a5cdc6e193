import threading
from datetime import date, datetime, time, timedelta, timezone
from itertools import combinations

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from clinic_backend import database
from clinic_backend.database import Base
from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.models.doctor import Doctor
from clinic_backend.models.patient import Patient
from clinic_backend.scheduling.errors import (
    ActiveAppointmentsExist,
    InvalidTransition,
    SlotConflict,
    UnknownEntity,
)
from clinic_backend.scheduling.intervals import overlaps
from clinic_backend.scheduling.ledger import BookingLedger, can_transition
from clinic_backend.scheduling.repository import ScheduleRepository

DAY = date(2030, 1, 7)


def at(hour: int, minute: int = 0) -> datetime:
    return datetime.combine(DAY, time(hour, minute))


@pytest.fixture
def ledger(db) -> BookingLedger:
    return BookingLedger(ScheduleRepository(db))


def test_commit_creates_pending_appointment(ledger, doctor, patient) -> None:
    appointment = ledger.commit(doctor.id, patient.id, at(10, 0), 30, notes='Chest pain')

    assert appointment.id is not None
    assert appointment.status == AppointmentStatus.PENDING
    assert appointment.end_time == at(10, 30)
    assert appointment.notes == 'Chest pain'


def test_commit_accepts_confirmed_entry_state(ledger, doctor, patient) -> None:
    appointment = ledger.commit(
        doctor.id, patient.id, at(10, 0), 30, initial_status=AppointmentStatus.CONFIRMED,
    )

    assert appointment.status == AppointmentStatus.CONFIRMED


@pytest.mark.parametrize('status', [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED])
def test_commit_rejects_terminal_entry_states(ledger, doctor, patient, status) -> None:
    with pytest.raises(InvalidTransition):
        ledger.commit(doctor.id, patient.id, at(10, 0), 30, initial_status=status)


def test_commit_rejects_overlapping_booking(db, ledger, doctor, patient, add_appointment) -> None:
    existing = add_appointment(at(10, 0), duration_minutes=30)

    with pytest.raises(SlotConflict) as exception_info:
        ledger.commit(doctor.id, patient.id, at(9, 45), 30)

    assert exception_info.value.conflicting_ids == [existing.id]
    assert db.query(Appointment).count() == 1


def test_commit_rejects_exact_same_start(ledger, doctor, patient, add_appointment) -> None:
    add_appointment(at(10, 0), duration_minutes=30)

    with pytest.raises(SlotConflict):
        ledger.commit(doctor.id, patient.id, at(10, 0), 30)


def test_commit_accepts_abutting_booking(ledger, doctor, patient, add_appointment) -> None:
    add_appointment(at(10, 0), duration_minutes=30)

    before = ledger.commit(doctor.id, patient.id, at(9, 30), 30)
    after = ledger.commit(doctor.id, patient.id, at(10, 30), 60)

    assert before.end_time == at(10, 0)
    assert after.start_time == at(10, 30)


def test_cancelled_appointments_do_not_block_commit(ledger, doctor, patient, add_appointment) -> None:
    add_appointment(at(10, 0), duration_minutes=60, status=AppointmentStatus.CANCELLED)

    appointment = ledger.commit(doctor.id, patient.id, at(10, 0), 60)

    assert appointment.status == AppointmentStatus.PENDING


def test_commit_requires_known_doctor_and_patient(ledger, doctor, patient) -> None:
    with pytest.raises(UnknownEntity) as doctor_error:
        ledger.commit(9999, patient.id, at(10, 0), 30)
    with pytest.raises(UnknownEntity) as patient_error:
        ledger.commit(doctor.id, 9999, at(10, 0), 30)

    assert doctor_error.value.entity == 'doctor'
    assert patient_error.value.entity == 'patient'


def test_commit_rejects_non_positive_duration(ledger, doctor, patient) -> None:
    with pytest.raises(ValueError):
        ledger.commit(doctor.id, patient.id, at(10, 0), 0)


def test_commit_rejects_timezone_aware_start(db, ledger, doctor, patient, add_appointment) -> None:
    add_appointment(at(10, 0), duration_minutes=30)

    with pytest.raises(ValueError):
        ledger.commit(doctor.id, patient.id, at(11, 0).replace(tzinfo=timezone.utc), 30)

    assert db.query(Appointment).count() == 1
    assert ledger.commit(doctor.id, patient.id, at(11, 0), 30).start_time == at(11, 0)


def test_failed_commit_rolls_back_and_releases_lock(db, ledger, doctor, patient, monkeypatch) -> None:
    def explode(*args, **kwargs):
        raise RuntimeError('connection dropped')

    monkeypatch.setattr(ledger.repository, 'booked_intervals_for', explode)

    with pytest.raises(RuntimeError):
        ledger.commit(doctor.id, patient.id, at(10, 0), 30)

    assert db.query(Appointment).count() == 0
    assert database._booking_locks == {}


def test_booking_lock_registry_drops_idle_entries() -> None:
    with database.hold_booking_lock(1, DAY):
        assert (1, DAY) in database._booking_locks
        with database.hold_booking_lock(2, DAY):
            assert set(database._booking_locks) == {(1, DAY), (2, DAY)}

    assert database._booking_locks == {}
    assert database._booking_lock_holders == {}


def test_committed_appointments_never_overlap(db, ledger, doctor, patient) -> None:
    requests = [
        (at(9, 0), 60), (at(9, 30), 30), (at(10, 0), 90), (at(10, 30), 30),
        (at(11, 30), 30), (at(11, 0), 60), (at(12, 0), 15), (at(11, 45), 30),
    ]
    for start, duration in requests:
        try:
            ledger.commit(doctor.id, patient.id, start, duration)
        except SlotConflict:
            pass

    booked = db.query(Appointment).filter(Appointment.doctor_id == doctor.id).all()
    assert len(booked) >= 3
    for first, second in combinations(booked, 2):
        assert not overlaps(first.start_time, first.end_time, second.start_time, second.end_time)


def test_concurrent_commits_for_same_slot_book_once(tmp_path) -> None:
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={'check_same_thread': False, 'timeout': 30},
    )
    Base.metadata.create_all(bind=engine)
    session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    setup = session_factory()
    doctor = Doctor(name='Dr. Race')
    patients = [Patient(name=f'Patient {index}') for index in range(6)]
    setup.add(doctor)
    setup.add_all(patients)
    setup.commit()
    doctor_id = doctor.id
    patient_ids = [patient.id for patient in patients]
    setup.close()

    barrier = threading.Barrier(len(patient_ids))
    outcomes: list[str] = []
    outcomes_lock = threading.Lock()

    def book(patient_id: int) -> None:
        session = session_factory()
        try:
            barrier.wait()
            BookingLedger(ScheduleRepository(session)).commit(doctor_id, patient_id, at(10, 0), 30)
            result = 'booked'
        except SlotConflict:
            result = 'conflict'
        finally:
            session.close()
        with outcomes_lock:
            outcomes.append(result)

    threads = [threading.Thread(target=book, args=(patient_id,)) for patient_id in patient_ids]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    check = session_factory()
    try:
        assert check.query(Appointment).count() == 1
    finally:
        check.close()
        engine.dispose()

    assert sorted(outcomes) == ['booked'] + ['conflict'] * (len(patient_ids) - 1)


@pytest.mark.parametrize(
    ('current', 'target', 'expected'),
    [
        (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, True),
        (AppointmentStatus.PENDING, AppointmentStatus.CANCELLED, True),
        (AppointmentStatus.PENDING, AppointmentStatus.COMPLETED, False),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, True),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, True),
        (AppointmentStatus.CONFIRMED, AppointmentStatus.PENDING, False),
        (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, False),
        (AppointmentStatus.CANCELLED, AppointmentStatus.PENDING, False),
        (AppointmentStatus.CANCELLED, AppointmentStatus.CONFIRMED, False),
    ],
)
def test_transition_table(current, target, expected) -> None:
    assert can_transition(current, target) is expected


def test_payment_confirms_then_completion(ledger, add_appointment) -> None:
    appointment = add_appointment(at(10, 0))

    assert ledger.confirm(appointment.id).status == AppointmentStatus.CONFIRMED
    assert ledger.complete(appointment.id).status == AppointmentStatus.COMPLETED


def test_pending_cannot_be_completed(ledger, add_appointment) -> None:
    appointment = add_appointment(at(10, 0))

    with pytest.raises(InvalidTransition):
        ledger.complete(appointment.id)


def test_patient_cancels_own_pending_appointment(ledger, patient, add_appointment) -> None:
    appointment = add_appointment(at(10, 0))

    cancelled = ledger.cancel_by_patient(appointment.id, patient.id, today=DAY)

    assert cancelled.status == AppointmentStatus.CANCELLED


def test_patient_cannot_cancel_confirmed_appointment(ledger, patient, add_appointment) -> None:
    appointment = add_appointment(at(10, 0), status=AppointmentStatus.CONFIRMED)

    with pytest.raises(InvalidTransition) as exception_info:
        ledger.cancel_by_patient(appointment.id, patient.id, today=DAY)

    assert 'Only pending appointments' in str(exception_info.value)


def test_patient_cannot_cancel_twice(ledger, patient, add_appointment) -> None:
    appointment = add_appointment(at(10, 0), status=AppointmentStatus.CANCELLED)

    with pytest.raises(InvalidTransition) as exception_info:
        ledger.cancel_by_patient(appointment.id, patient.id, today=DAY)

    assert str(exception_info.value) == 'Appointment is already cancelled.'


def test_patient_cannot_cancel_past_appointment(ledger, patient, add_appointment) -> None:
    appointment = add_appointment(at(10, 0))

    with pytest.raises(InvalidTransition) as exception_info:
        ledger.cancel_by_patient(appointment.id, patient.id, today=DAY + timedelta(days=1))

    assert str(exception_info.value) == 'Cannot cancel past appointments.'


def test_patient_cannot_cancel_someone_elses_appointment(db, ledger, add_appointment) -> None:
    appointment = add_appointment(at(10, 0))
    stranger = Patient(name='Stranger')
    db.add(stranger)
    db.commit()

    with pytest.raises(UnknownEntity):
        ledger.cancel_by_patient(appointment.id, stranger.id, today=DAY)


def test_admin_cancels_confirmed_appointment(ledger, add_appointment) -> None:
    appointment = add_appointment(at(10, 0), status=AppointmentStatus.CONFIRMED)

    assert ledger.cancel_by_admin(appointment.id).status == AppointmentStatus.CANCELLED


@pytest.mark.parametrize('status', [AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED])
def test_terminal_states_cannot_be_left(ledger, add_appointment, status) -> None:
    appointment = add_appointment(at(10, 0), status=status)

    with pytest.raises(InvalidTransition):
        ledger.cancel_by_admin(appointment.id)
    with pytest.raises(InvalidTransition):
        ledger.confirm(appointment.id)


def test_unknown_appointment_transition(ledger) -> None:
    with pytest.raises(UnknownEntity):
        ledger.confirm(4242)


def test_cancelled_slot_can_be_rebooked(ledger, doctor, patient) -> None:
    first = ledger.commit(doctor.id, patient.id, at(10, 0), 30)
    ledger.cancel_by_admin(first.id)

    second = ledger.commit(doctor.id, patient.id, at(10, 0), 30)

    assert second.id != first.id


def test_deletion_guard_blocks_active_appointments(ledger, doctor, patient, add_appointment) -> None:
    add_appointment(at(10, 0), status=AppointmentStatus.COMPLETED)

    with pytest.raises(ActiveAppointmentsExist):
        ledger.ensure_deletable_doctor(doctor.id)
    with pytest.raises(ActiveAppointmentsExist):
        ledger.ensure_deletable_patient(patient.id)


def test_deletion_guard_ignores_cancelled_appointments(ledger, doctor, patient, add_appointment) -> None:
    add_appointment(at(10, 0), status=AppointmentStatus.CANCELLED)

    ledger.ensure_deletable_doctor(doctor.id)
    ledger.ensure_deletable_patient(patient.id)


def test_deletion_guard_requires_known_entity(ledger) -> None:
    with pytest.raises(UnknownEntity):
        ledger.ensure_deletable_doctor(9999)

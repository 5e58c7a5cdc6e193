from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from threading import Lock

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from clinic_backend.core import config


def _connect_args(database_url: str) -> dict:
    if database_url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


engine = create_engine(
    config.DATABASE_URL,
    echo=config.SQL_ECHO,
    connect_args=_connect_args(config.DATABASE_URL),
)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_registry_lock = Lock()
_booking_locks: dict[tuple[int, date], Lock] = {}
_booking_lock_holders: dict[tuple[int, date], int] = {}


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def hold_booking_lock(doctor_id: int, day: date) -> Iterator[None]:
    """Hold the process-wide lock guarding bookings for one doctor on one day.

    Entries are reference counted under the registry lock and dropped once no
    thread holds or waits on them.
    """
    key = (doctor_id, day)
    with _registry_lock:
        lock = _booking_locks.get(key)
        if lock is None:
            lock = Lock()
            _booking_locks[key] = lock
        _booking_lock_holders[key] = _booking_lock_holders.get(key, 0) + 1

    try:
        with lock:
            yield
    finally:
        with _registry_lock:
            _booking_lock_holders[key] -= 1
            if not _booking_lock_holders[key]:
                del _booking_lock_holders[key]
                del _booking_locks[key]

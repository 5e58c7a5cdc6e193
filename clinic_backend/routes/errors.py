from fastapi import HTTPException, status

from clinic_backend.scheduling.errors import (
    ActiveAppointmentsExist,
    InvalidTransition,
    InvalidWindow,
    SchedulingError,
    SlotConflict,
    UnknownEntity,
)

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'

_STATUS_CODES: dict[type[SchedulingError], int] = {
    SlotConflict: status.HTTP_409_CONFLICT,
    InvalidWindow: status.HTTP_400_BAD_REQUEST,
    UnknownEntity: status.HTTP_404_NOT_FOUND,
    InvalidTransition: status.HTTP_409_CONFLICT,
    ActiveAppointmentsExist: status.HTTP_409_CONFLICT,
}


def to_http_exception(exc: SchedulingError) -> HTTPException:
    status_code = _STATUS_CODES.get(type(exc), status.HTTP_400_BAD_REQUEST)
    return HTTPException(status_code=status_code, detail=str(exc))


def database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )

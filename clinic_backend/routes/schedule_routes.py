from datetime import date, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import is_admin, is_doctor, require_role
from clinic_backend.database import get_db
from clinic_backend.models.schedule import DoctorSchedule
from clinic_backend.models.user import ADMIN_ROLE, DOCTOR_ROLE, User
from clinic_backend.routes.errors import database_unavailable, to_http_exception
from clinic_backend.scheduling.errors import SchedulingError
from clinic_backend.scheduling.repository import ScheduleRepository

router = APIRouter(tags=['schedules'])


class ScheduleWindowRequest(BaseModel):
    doctor_id: int | None = None
    date: date
    start_time: time
    end_time: time
    is_available: bool = True


class ScheduleWindowResponse(BaseModel):
    id: int
    doctor_id: int
    date: date
    start_time: time
    end_time: time
    is_available: bool

    class Config:
        from_attributes = True


def resolve_target_doctor(current_user: User, requested_doctor_id: int | None) -> int:
    if is_admin(current_user):
        if requested_doctor_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail='doctor_id is required when managing schedules for a doctor.',
            )
        return requested_doctor_id

    if not is_doctor(current_user):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Only doctors and admins can manage schedules.',
        )
    if requested_doctor_id is not None and requested_doctor_id != current_user.doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Doctors can only manage their own schedule.',
        )
    return current_user.doctor_id


def load_owned_window(repository: ScheduleRepository, window_id: int, current_user: User) -> DoctorSchedule:
    window = repository.get_window(window_id)
    if not is_admin(current_user) and window.doctor_id != current_user.doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Doctors can only manage their own schedule.',
        )
    return window


@router.get('/doctors/{doctor_id}', response_model=list[ScheduleWindowResponse])
def list_doctor_windows(
    doctor_id: int,
    day: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
):
    try:
        return ScheduleRepository(db).windows_for(doctor_id, day, available_only=False)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('', response_model=ScheduleWindowResponse, status_code=status.HTTP_201_CREATED)
def create_window(
    data: ScheduleWindowRequest,
    current_user: User = Depends(require_role(DOCTOR_ROLE, ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    doctor_id = resolve_target_doctor(current_user, data.doctor_id)

    try:
        window = ScheduleRepository(db).add_window(
            doctor_id=doctor_id,
            day=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            is_available=data.is_available,
        )
        db.commit()
        db.refresh(window)
        return window
    except SchedulingError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{window_id}', response_model=ScheduleWindowResponse)
def update_window(
    window_id: int,
    data: ScheduleWindowRequest,
    current_user: User = Depends(require_role(DOCTOR_ROLE, ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    repository = ScheduleRepository(db)

    try:
        window = load_owned_window(repository, window_id, current_user)
        repository.update_window(
            window,
            day=data.date,
            start_time=data.start_time,
            end_time=data.end_time,
            is_available=data.is_available,
        )
        db.commit()
        db.refresh(window)
        return window
    except SchedulingError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{window_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_window(
    window_id: int,
    current_user: User = Depends(require_role(DOCTOR_ROLE, ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    repository = ScheduleRepository(db)

    try:
        window = load_owned_window(repository, window_id, current_user)
        repository.delete_window(window)
        db.commit()
    except SchedulingError as exc:
        db.rollback()
        raise to_http_exception(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

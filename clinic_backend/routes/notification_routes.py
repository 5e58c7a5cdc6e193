from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import require_role
from clinic_backend.database import get_db
from clinic_backend.models.user import ADMIN_ROLE, User
from clinic_backend.notifications.reminders import send_due_reminders
from clinic_backend.routes.errors import database_unavailable

router = APIRouter(tags=['notifications'])


class ReminderRunResponse(BaseModel):
    reminded_appointment_ids: list[int]


@router.post('/reminders/run', response_model=ReminderRunResponse)
def run_reminders(
    current_user: User = Depends(require_role(ADMIN_ROLE)),
    db: Session = Depends(get_db),
):
    try:
        return ReminderRunResponse(reminded_appointment_ids=send_due_reminders(db))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc

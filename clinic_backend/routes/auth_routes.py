from fastapi import APIRouter, Depends

from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.models.user import User

router = APIRouter(tags=['auth'])


@router.get("/me")
def me(current_user: User = Depends(get_current_user)):
    return {
        "email": current_user.email,
        "role": current_user.role,
        "doctor_id": current_user.doctor_id,
        "patient_id": current_user.patient_id,
    }

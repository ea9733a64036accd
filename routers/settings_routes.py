# routers/settings_routes.py
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from database import get_db
from schemas.personalization import PersonalizationOut, PersonalizationUpdate
from services.personalization_service import get_personalization, update_personalization
from services.supabase_auth import get_current_db_user
from utils.responses import ok

router = APIRouter()


@router.get("/personalization")
def get_user_personalization(
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(PersonalizationOut.model_validate(get_personalization(db, user.id)).model_dump())


@router.put("/personalization")
@router.patch("/personalization")
def update_user_personalization(
    payload: PersonalizationUpdate,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    settings = update_personalization(
        db,
        user.id,
        risk_profile=payload.risk_profile,
        investment_goal=payload.investment_goal,
        focus_areas=payload.focus_areas,
    )
    return ok(PersonalizationOut.model_validate(settings).model_dump())

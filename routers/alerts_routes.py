# routers/alerts_routes.py
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from schemas.alert import SellAlertAction, SellAlertOut
from services.alert_service import PENDING_LIMIT, list_pending_sell_alerts, resolve_sell_alert
from services.supabase_auth import get_current_db_user
from utils.responses import http_error, ok

router = APIRouter()


@router.get("/sell")
def get_sell_alerts(
    limit: int = Query(PENDING_LIMIT, ge=1, le=50),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    alerts = list_pending_sell_alerts(db, user.id, limit=limit)
    return ok([SellAlertOut.model_validate(a).model_dump() for a in alerts], count=len(alerts))


@router.patch("/sell/{alert_id}")
def update_sell_alert(
    alert_id: int,
    payload: SellAlertAction,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        alert = resolve_sell_alert(db, user.id, alert_id, payload.action)
    except ValueError as exc:
        raise http_error(exc)
    return ok(SellAlertOut.model_validate(alert).model_dump())

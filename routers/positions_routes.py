# routers/positions_routes.py
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_db
from schemas.alert import SellAlertSettings
from schemas.auto_invest import ReapplyRequest, ScheduleCreate, ScheduleOut, ScheduleUpdate
from schemas.position import PositionCreate, PositionOut
from schemas.transaction import TransactionCreate, TransactionOut
from services.alert_service import evaluate_sell_alerts, get_sell_alert_settings, update_sell_alert_settings
from services.auto_invest_service import (
    create_schedule,
    delete_schedule,
    list_schedules,
    reapply_schedule,
    update_schedule,
)
from services.position_service import (
    calculate_portfolio_totals,
    create_position,
    delete_position,
    list_positions,
    refresh_positions_with_live_prices,
    require_position,
)
from services.supabase_auth import get_current_db_user
from services.transaction_service import create_transaction, list_position_transactions
from utils.responses import http_error, ok

router = APIRouter()


def _position(p) -> dict:
    return PositionOut.model_validate(p).model_dump()


@router.get("")
async def get_positions(
    refresh: bool = Query(False, description="Re-price holdings with live quotes first"),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    fired = []
    if refresh:
        positions = await refresh_positions_with_live_prices(db, user.id)
        fired = evaluate_sell_alerts(db, user.id, positions)
    else:
        positions = list_positions(db, user.id)
    totals = await calculate_portfolio_totals(positions)
    return ok({"positions": [_position(p) for p in positions], "totals": totals}, sell_alerts_triggered=len(fired))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_user_position(
    payload: PositionCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        position, merged = await create_position(db, user.id, payload)
    except ValueError as exc:
        raise http_error(exc)
    return ok(_position(position), merged=merged)


@router.get("/{position_id}")
def get_position_detail(
    position_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        return ok(_position(require_position(db, user.id, position_id)))
    except ValueError as exc:
        raise http_error(exc)


@router.delete("/{position_id}")
def delete_user_position(
    position_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        delete_position(db, user.id, position_id)
    except ValueError as exc:
        raise http_error(exc)
    return ok({"id": position_id, "deleted": True})


# ---- transactions of one position ----

@router.get("/{position_id}/transactions")
def get_position_transactions(
    position_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        txs = list_position_transactions(db, user.id, position_id)
    except ValueError as exc:
        raise http_error(exc)
    return ok([TransactionOut.model_validate(t).model_dump() for t in txs])


@router.post("/{position_id}/transactions", status_code=status.HTTP_201_CREATED)
async def add_position_transaction(
    position_id: int,
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        tx = await create_transaction(db, user.id, payload.model_copy(update={"position_id": position_id}))
        position = require_position(db, user.id, position_id)
    except ValueError as exc:
        raise http_error(exc)
    return ok({"transaction": TransactionOut.model_validate(tx).model_dump(), "position": _position(position)})


# ---- auto-invest schedules ----

@router.get("/{position_id}/auto-invest")
def get_position_schedules(
    position_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        schedules = list_schedules(db, user.id, position_id)
    except ValueError as exc:
        raise http_error(exc)
    return ok([ScheduleOut.model_validate(s).model_dump() for s in schedules])


@router.post("/{position_id}/auto-invest", status_code=status.HTTP_201_CREATED)
async def add_position_schedule(
    position_id: int,
    payload: ScheduleCreate,
    fallback_price: float | None = Query(None, gt=0),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        schedule = await create_schedule(db, user.id, position_id, payload, fallback_price=fallback_price)
    except ValueError as exc:
        raise http_error(exc)
    return ok(ScheduleOut.model_validate(schedule).model_dump())


@router.patch("/{position_id}/auto-invest/{schedule_id}")
def update_position_schedule(
    position_id: int,
    schedule_id: int,
    payload: ScheduleUpdate,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        schedule = update_schedule(db, user.id, position_id, schedule_id, payload)
    except ValueError as exc:
        raise http_error(exc)
    return ok(ScheduleOut.model_validate(schedule).model_dump())


@router.delete("/{position_id}/auto-invest/{schedule_id}")
def delete_position_schedule(
    position_id: int,
    schedule_id: int,
    delete_transactions: bool = Query(False),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        result = delete_schedule(db, user.id, position_id, schedule_id, delete_transactions=delete_transactions)
    except ValueError as exc:
        raise http_error(exc)
    return ok({"id": schedule_id, "deleted": True, **result})


@router.post("/{position_id}/auto-invest/reapply")
async def reapply_position_schedule(
    position_id: int,
    payload: ReapplyRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        result = await reapply_schedule(
            db,
            user.id,
            position_id,
            payload.schedule_id,
            payload.effective_from,
            price_per_share=payload.price_per_share,
        )
    except ValueError as exc:
        raise http_error(exc)
    return ok(result)


# ---- take-profit alert settings ----

@router.get("/{position_id}/sell-alert")
def get_position_sell_alert(
    position_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        position = require_position(db, user.id, position_id)
    except ValueError as exc:
        raise http_error(exc)
    return ok(get_sell_alert_settings(position))


@router.put("/{position_id}/sell-alert")
def put_position_sell_alert(
    position_id: int,
    payload: SellAlertSettings,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        return ok(update_sell_alert_settings(db, user.id, position_id, payload))
    except ValueError as exc:
        raise http_error(exc)

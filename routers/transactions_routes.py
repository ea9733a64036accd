# routers/transactions_routes.py
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from database import get_db
from schemas.position import PositionOut
from schemas.transaction import TransactionCreate, TransactionOut
from services.supabase_auth import get_current_db_user
from services.transaction_service import (
    calculate_transaction_stats,
    create_transaction,
    delete_transaction,
    get_transaction,
    get_transaction_timeline,
    list_transactions,
)
from utils.responses import http_error, ok

router = APIRouter()


def _tx(t) -> dict:
    return TransactionOut.model_validate(t).model_dump()


@router.get("")
def get_transactions(
    symbol: Optional[str] = Query(None),
    type: Optional[Literal["buy", "sell", "dividend"]] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    position_id: Optional[int] = Query(None),
    limit: int = Query(100, ge=1, le=1000),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    txs = list_transactions(
        db,
        user.id,
        symbol=symbol,
        type=type,
        start_date=start_date,
        end_date=end_date,
        position_id=position_id,
        limit=limit,
    )
    return ok([_tx(t) for t in txs], count=len(txs))


@router.post("", status_code=status.HTTP_201_CREATED)
async def add_transaction(
    payload: TransactionCreate,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    if payload.position_id is None and not payload.symbol:
        raise http_error(ValueError("position_id or symbol is required"))
    try:
        tx = await create_transaction(db, user.id, payload)
    except ValueError as exc:
        raise http_error(exc)
    return ok(_tx(tx))


# declared before /{transaction_id} so "stats" and "timeline" are not parsed as ids
@router.get("/stats")
async def get_transaction_stats(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(await calculate_transaction_stats(db, user.id, start_date, end_date))


@router.get("/timeline")
async def get_timeline(
    granularity: Literal["week", "month"] = Query("week"),
    months: int = Query(6, ge=1, le=60),
    limit: Optional[int] = Query(None, ge=1, le=120),
    purchase_method: Optional[Literal["auto", "manual"]] = Query(None),
    type: Optional[Literal["buy", "sell", "dividend"]] = Query(None),
    symbol: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(
        await get_transaction_timeline(
            db,
            user.id,
            granularity=granularity,
            months=months,
            limit=limit,
            purchase_method=purchase_method,
            type=type,
            symbol=symbol,
            start_date=start_date,
            end_date=end_date,
        )
    )


@router.get("/{transaction_id}")
def get_transaction_detail(
    transaction_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    tx = get_transaction(db, user.id, transaction_id)
    if not tx:
        raise http_error(ValueError("Transaction not found"))
    return ok(_tx(tx))


@router.delete("/{transaction_id}")
def delete_user_transaction(
    transaction_id: int,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        position = delete_transaction(db, user.id, transaction_id)
    except ValueError as exc:
        raise http_error(exc)
    return ok({"id": transaction_id, "deleted": True, "position": PositionOut.model_validate(position).model_dump()})

# routers/watchlist_routes.py
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from database import get_db
from models.user import User
from schemas.watchlist import (
    WatchlistCreate,
    WatchlistItemCreate,
    WatchlistItemUpdate,
    WatchlistOut,
    WatchlistUpdate,
)
from services.supabase_auth import get_current_db_user
from services.watchlist_service import (
    add_watchlist_item,
    create_watchlist,
    delete_watchlist,
    list_watchlists,
    remove_watchlist_item,
    require_watchlist,
    update_watchlist,
    update_watchlist_item,
)
from utils.responses import http_error, ok

router = APIRouter()


def _out(watchlist) -> dict:
    return WatchlistOut.model_validate(watchlist).model_dump()


@router.get("")
def get_user_watchlists(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    return ok([_out(w) for w in list_watchlists(db, user.id)])


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user_watchlist(
    payload: WatchlistCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        watchlist = create_watchlist(
            db,
            user.id,
            name=payload.name,
            is_default=payload.is_default,
            symbols=payload.symbols,
        )
    except ValueError as exc:
        raise http_error(exc)
    return ok(_out(watchlist))


@router.get("/{watchlist_id}")
def get_user_watchlist(
    watchlist_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        return ok(_out(require_watchlist(db, user.id, watchlist_id)))
    except ValueError as exc:
        raise http_error(exc)


@router.patch("/{watchlist_id}")
def update_user_watchlist(
    watchlist_id: int,
    payload: WatchlistUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        watchlist = update_watchlist(
            db,
            user.id,
            watchlist_id,
            name=payload.name,
            is_default=payload.is_default,
        )
    except ValueError as exc:
        raise http_error(exc)
    return ok(_out(watchlist))


@router.post("/{watchlist_id}/items", status_code=status.HTTP_201_CREATED)
def add_user_watchlist_item(
    watchlist_id: int,
    payload: WatchlistItemCreate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        watchlist = add_watchlist_item(
            db,
            user.id,
            watchlist_id,
            symbol=payload.symbol,
            name=payload.name,
            note=payload.note,
            target_price=payload.target_price,
        )
    except ValueError as exc:
        raise http_error(exc)
    return ok(_out(watchlist))


@router.patch("/{watchlist_id}/items/{symbol}")
def update_user_watchlist_item(
    watchlist_id: int,
    symbol: str,
    payload: WatchlistItemUpdate,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        watchlist = update_watchlist_item(
            db,
            user.id,
            watchlist_id,
            symbol=symbol,
            **payload.model_dump(exclude_unset=True),
        )
    except ValueError as exc:
        raise http_error(exc)
    return ok(_out(watchlist))


@router.delete("/{watchlist_id}/items/{symbol}")
def delete_user_watchlist_item(
    watchlist_id: int,
    symbol: str,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        return ok(_out(remove_watchlist_item(db, user.id, watchlist_id, symbol=symbol)))
    except ValueError as exc:
        raise http_error(exc)


@router.delete("/{watchlist_id}")
def delete_user_watchlist(
    watchlist_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(get_current_db_user),
):
    try:
        delete_watchlist(db, user.id, watchlist_id)
    except ValueError as exc:
        raise http_error(exc)
    return ok({"id": watchlist_id, "deleted": True})

# services/watchlist_service.py
from __future__ import annotations

import logging
from typing import Any, Iterable, List

from sqlalchemy.orm import Session, selectinload

from models.watchlist import Watchlist, WatchlistItem
from services.errors import ConflictError, NotFoundError
from utils.common_helpers import normalize_symbol

logger = logging.getLogger(__name__)

_UNSET: Any = object()


def _normalize_symbol(value: str) -> str:
    symbol = normalize_symbol(value)
    if not symbol or len(symbol) > 20:
        raise ValueError("symbol must be 1-20 characters")
    return symbol


def _normalize_symbols(values: Iterable[str]) -> list[str]:
    out: list[str] = []
    seen: set[str] = set()
    for value in values:
        symbol = _normalize_symbol(value)
        if symbol in seen:
            continue
        seen.add(symbol)
        out.append(symbol)
    return out


def list_watchlists(db: Session, user_id: int) -> List[Watchlist]:
    return (
        db.query(Watchlist)
        .options(selectinload(Watchlist.items))
        .filter(Watchlist.user_id == user_id)
        .order_by(Watchlist.is_default.desc(), Watchlist.created_at.asc(), Watchlist.id.asc())
        .all()
    )


def get_watchlist(db: Session, user_id: int, watchlist_id: int) -> Watchlist | None:
    return (
        db.query(Watchlist)
        .options(selectinload(Watchlist.items))
        .filter(Watchlist.user_id == user_id, Watchlist.id == watchlist_id)
        .first()
    )


def require_watchlist(db: Session, user_id: int, watchlist_id: int) -> Watchlist:
    watchlist = get_watchlist(db, user_id, watchlist_id)
    if not watchlist:
        raise NotFoundError("Watchlist not found")
    return watchlist


def _clear_default_watchlists(db: Session, user_id: int, exclude_id: int | None = None) -> None:
    query = db.query(Watchlist).filter(Watchlist.user_id == user_id, Watchlist.is_default.is_(True))
    if exclude_id is not None:
        query = query.filter(Watchlist.id != exclude_id)
    for watchlist in query.all():
        watchlist.is_default = False


def _find_item(db: Session, watchlist_id: int, symbol: str) -> WatchlistItem | None:
    return (
        db.query(WatchlistItem)
        .filter(WatchlistItem.watchlist_id == watchlist_id, WatchlistItem.symbol == symbol)
        .first()
    )


def create_watchlist(
    db: Session,
    user_id: int,
    *,
    name: str,
    is_default: bool = False,
    symbols: Iterable[str] | None = None,
) -> Watchlist:
    existing = (
        db.query(Watchlist)
        .filter(Watchlist.user_id == user_id, Watchlist.name == name)
        .first()
    )
    if existing:
        raise ConflictError("Watchlist with this name already exists")

    # the first list a user creates becomes the default
    should_default = is_default or not db.query(Watchlist).filter(Watchlist.user_id == user_id).first()
    if should_default:
        _clear_default_watchlists(db, user_id)

    watchlist = Watchlist(user_id=user_id, name=name, is_default=should_default)
    db.add(watchlist)
    db.flush()

    for symbol in _normalize_symbols(symbols or []):
        db.add(WatchlistItem(watchlist_id=watchlist.id, symbol=symbol))

    db.commit()
    return require_watchlist(db, user_id, watchlist.id)


def update_watchlist(
    db: Session,
    user_id: int,
    watchlist_id: int,
    *,
    name: str | None = None,
    is_default: bool | None = None,
) -> Watchlist:
    watchlist = require_watchlist(db, user_id, watchlist_id)

    if name is not None and name != watchlist.name:
        duplicate = (
            db.query(Watchlist)
            .filter(Watchlist.user_id == user_id, Watchlist.name == name, Watchlist.id != watchlist_id)
            .first()
        )
        if duplicate:
            raise ConflictError("Watchlist with this name already exists")
        watchlist.name = name

    if is_default is True:
        _clear_default_watchlists(db, user_id, exclude_id=watchlist.id)
        watchlist.is_default = True
    elif is_default is False:
        watchlist.is_default = False

    db.commit()
    return require_watchlist(db, user_id, watchlist_id)


def delete_watchlist(db: Session, user_id: int, watchlist_id: int) -> None:
    watchlist = require_watchlist(db, user_id, watchlist_id)

    was_default = watchlist.is_default
    db.delete(watchlist)
    db.commit()

    if was_default:
        replacement = (
            db.query(Watchlist)
            .filter(Watchlist.user_id == user_id)
            .order_by(Watchlist.created_at.asc(), Watchlist.id.asc())
            .first()
        )
        if replacement:
            replacement.is_default = True
            db.commit()
    logger.info("Deleted watchlist %s for user %s", watchlist_id, user_id)


def add_watchlist_item(
    db: Session,
    user_id: int,
    watchlist_id: int,
    *,
    symbol: str,
    name: str | None = None,
    note: str | None = None,
    target_price: float | None = None,
) -> Watchlist:
    require_watchlist(db, user_id, watchlist_id)

    normalized_symbol = _normalize_symbol(symbol)
    if _find_item(db, watchlist_id, normalized_symbol):
        raise ConflictError("Symbol already exists in watchlist")

    db.add(
        WatchlistItem(
            watchlist_id=watchlist_id,
            symbol=normalized_symbol,
            name=name,
            note=note,
            target_price=target_price,
        )
    )
    db.commit()
    return require_watchlist(db, user_id, watchlist_id)


def update_watchlist_item(
    db: Session,
    user_id: int,
    watchlist_id: int,
    *,
    symbol: str,
    name: Any = _UNSET,
    note: Any = _UNSET,
    target_price: Any = _UNSET,
) -> Watchlist:
    """Only the fields passed are touched; pass None to clear one."""
    require_watchlist(db, user_id, watchlist_id)

    item = _find_item(db, watchlist_id, _normalize_symbol(symbol))
    if not item:
        raise NotFoundError("Symbol not found in watchlist")

    if name is not _UNSET:
        item.name = name
    if note is not _UNSET:
        item.note = note
    if target_price is not _UNSET:
        item.target_price = target_price

    db.commit()
    return require_watchlist(db, user_id, watchlist_id)


def remove_watchlist_item(db: Session, user_id: int, watchlist_id: int, *, symbol: str) -> Watchlist:
    require_watchlist(db, user_id, watchlist_id)

    item = _find_item(db, watchlist_id, _normalize_symbol(symbol))
    if not item:
        raise NotFoundError("Symbol not found in watchlist")

    db.delete(item)
    db.commit()
    return require_watchlist(db, user_id, watchlist_id)

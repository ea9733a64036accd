# services/position_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from models.position import Position
from models.transaction import Transaction
from schemas.position import PositionCreate
from services.currency_service import assert_currency, convert_with_rate, get_usd_krw_rate
from services.errors import NotFoundError
from services.ledger import aggregate_position_metrics, calculate_return_rate
from services.market_data_service import get_latest_prices
from utils.trading_calendar import determine_market_from_context

logger = logging.getLogger(__name__)


def get_position(db: Session, user_id: int, position_id: int) -> Position | None:
    return (
        db.query(Position)
        .filter(Position.user_id == user_id, Position.id == position_id)
        .first()
    )


def require_position(db: Session, user_id: int, position_id: int) -> Position:
    position = get_position(db, user_id, position_id)
    if not position:
        raise NotFoundError("Position not found")
    return position


def find_position_by_symbol(db: Session, user_id: int, symbol: str) -> Position | None:
    return (
        db.query(Position)
        .filter(Position.user_id == user_id, Position.symbol == (symbol or "").strip().upper())
        .first()
    )


def list_positions(db: Session, user_id: int) -> List[Position]:
    return (
        db.query(Position)
        .filter(Position.user_id == user_id)
        .order_by(Position.total_value.desc(), Position.id.asc())
        .all()
    )


def position_currency(position: Position) -> str:
    return assert_currency(position.currency, "KRW" if position.market == "KR" else "USD")


def _apply_metrics(position: Position, metrics: Any) -> None:
    position.shares = metrics.shares
    position.average_price = metrics.average_price
    position.total_invested = metrics.total_invested
    position.current_price = metrics.current_price
    position.total_value = metrics.total_value
    position.return_rate = metrics.return_rate
    position.profit_loss = metrics.profit_loss
    position.realized_gain = metrics.realized_gain
    position.dividend_income = metrics.dividend_income
    position.transaction_count = metrics.transaction_count
    position.first_purchase_date = metrics.first_purchase_date
    position.last_transaction_date = metrics.last_transaction_date


def recalculate_position(
    db: Session,
    position: Position,
    current_price: Optional[float] = None,
    commit: bool = True,
) -> Position:
    """Rebuild holdings from every transaction of the position."""
    transactions = (
        db.query(Transaction)
        .filter(Transaction.position_id == position.id)
        .order_by(Transaction.date.asc(), Transaction.id.asc())
        .all()
    )
    metrics = aggregate_position_metrics(transactions, current_price=current_price, previous=position)
    _apply_metrics(position, metrics)
    if commit:
        db.commit()
        db.refresh(position)
    else:
        db.flush()
    return position


def update_position_prices(db: Session, user_id: int, prices: Dict[str, float]) -> List[Position]:
    """Apply fresh quotes (symbol -> price) and re-derive value/return fields."""
    positions = list_positions(db, user_id)
    for position in positions:
        price = prices.get(position.symbol)
        if price is None or price <= 0:
            continue
        position.current_price = price
        position.total_value = position.shares * price
        position.profit_loss = position.total_value - position.total_invested
        position.return_rate = calculate_return_rate(position.total_value, position.total_invested)
    db.commit()
    return list_positions(db, user_id)


async def refresh_positions_with_live_prices(db: Session, user_id: int) -> List[Position]:
    positions = list_positions(db, user_id)
    if not positions:
        return positions
    prices = await get_latest_prices([p.symbol for p in positions])
    if not prices:
        logger.info("No live prices available, keeping stored prices for %d positions", len(positions))
        return positions
    return update_position_prices(db, user_id, prices)


def delete_position(db: Session, user_id: int, position_id: int) -> None:
    position = require_position(db, user_id, position_id)
    # transactions and schedules go with it (ORM cascade)
    db.delete(position)
    db.commit()


def _new_position(db: Session, user_id: int, payload: PositionCreate) -> Position:
    stock = payload.stock
    market = determine_market_from_context(stock.market, stock.currency, stock.symbol)
    currency = assert_currency(stock.currency, "KRW" if market == "KR" else "USD")
    position = Position(
        user_id=user_id,
        symbol=stock.symbol,
        name=stock.name or stock.symbol,
        market=market,
        exchange=stock.exchange or "",
        asset_type=stock.asset_type,
        sector=stock.sector,
        currency=currency,
        purchase_method=payload.purchase_method,
    )
    db.add(position)
    db.flush()
    return position


async def create_position(db: Session, user_id: int, payload: PositionCreate) -> Tuple[Position, bool]:
    """
    Create a position, or merge into the existing one for the same symbol.
    The initial purchase (manual) or schedule + backfill (auto) goes through
    the ledger, so holdings always come from transactions.
    Returns (position, merged).
    """
    from services.auto_invest_service import create_schedule
    from services.transaction_service import create_transaction
    from schemas.auto_invest import ScheduleCreate
    from schemas.transaction import TransactionCreate

    existing = find_position_by_symbol(db, user_id, payload.stock.symbol)
    merged = existing is not None
    position = existing or _new_position(db, user_id, payload)
    db.commit()

    if payload.purchase_method == "manual" and payload.initial_purchase is not None:
        purchase = payload.initial_purchase
        await create_transaction(
            db,
            user_id,
            TransactionCreate(
                position_id=position.id,
                type="buy",
                date=purchase.date,
                shares=purchase.shares,
                price=purchase.price,
                amount=purchase.amount or purchase.shares * purchase.price,
                fee=purchase.fee,
                tax=purchase.tax,
                currency=position.currency,
                exchange_rate=purchase.exchange_rate,
                memo="Additional buy (merged)" if merged else "Initial buy",
            ),
        )
    elif payload.purchase_method == "auto" and payload.auto_invest is not None:
        config = payload.auto_invest
        await create_schedule(
            db,
            user_id,
            position.id,
            ScheduleCreate(
                frequency=config.frequency,
                amount=config.amount,
                currency=position.currency,
                effective_from=config.start_date,
                backfill=True,
            ),
            fallback_price=config.fallback_price,
        )

    db.refresh(position)
    logger.info("Position %s for user %s (%s)", position.id, user_id, "merged" if merged else "created")
    return position, merged


async def calculate_portfolio_totals(
    positions: List[Position],
    rate_info: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Per-currency totals plus both-currency conversions; combined figures in USD."""
    by_currency = {
        ccy: {"total_invested": 0.0, "total_value": 0.0, "count": 0}
        for ccy in ("USD", "KRW")
    }
    for p in positions:
        bucket = by_currency[position_currency(p)]
        bucket["total_invested"] += p.total_invested or 0.0
        bucket["total_value"] += p.total_value or 0.0
        bucket["count"] += 1

    fx = rate_info or await get_usd_krw_rate()
    rate = fx["rate"]

    def _collapse(field: str, target: str) -> float:
        return sum(convert_with_rate(by_currency[ccy][field], ccy, target, rate) for ccy in by_currency)

    invested_usd = _collapse("total_invested", "USD")
    value_usd = _collapse("total_value", "USD")
    invested_krw = _collapse("total_invested", "KRW")
    value_krw = _collapse("total_value", "KRW")

    return {
        "by_currency": by_currency,
        "converted": {
            "USD": {"total_invested": invested_usd, "total_value": value_usd},
            "KRW": {"total_invested": invested_krw, "total_value": value_krw},
        },
        "combined": {
            "base_currency": "USD",
            "total_invested": invested_usd,
            "total_value": value_usd,
            "return_rate": calculate_return_rate(value_usd, invested_usd),
        },
        "exchange_rate": {"base": "USD", "quote": "KRW", "rate": rate, "source": fx.get("source")},
    }

# services/transaction_service.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.orm import Session

from models.position import Position
from models.transaction import Transaction
from schemas.transaction import TransactionCreate
from services.currency_service import assert_currency, convert_with_rate, get_historical_usd_krw_rate, get_usd_krw_rate
from services.errors import NotFoundError
from services.ledger import compute_total_amount
from services.position_service import find_position_by_symbol, recalculate_position, require_position
from utils.trading_calendar import (
    add_months,
    adjust_to_previous_trading_day,
    determine_market_from_context,
    get_market_today,
    is_future_trading_date,
    is_kr_symbol,
    is_trading_day,
    to_date,
)

logger = logging.getLogger(__name__)

DEFAULT_LIST_LIMIT = 100
MAX_LIST_LIMIT = 1000


def normalize_trade_date(value: Any, market: Optional[str] = None) -> date:
    """Future dates clamp to the market's today; weekends roll back to Friday."""
    d = to_date(value)
    if is_future_trading_date(d, market):
        d = get_market_today(market)
    if not is_trading_day(d, market):
        d = adjust_to_previous_trading_day(d, market)
    return d


def resolve_transaction_currency(
    symbol: Optional[str],
    position: Optional[Position] = None,
    requested: Optional[str] = None,
) -> str:
    """Numeric KR codes are always KRW; otherwise the position decides, then the request."""
    if is_kr_symbol(symbol):
        return "KRW"
    if position is not None:
        if position.market == "KR":
            return "KRW"
        if position.currency in ("USD", "KRW"):
            return position.currency
    return assert_currency(requested)


def _resolve_position(db: Session, user_id: int, payload: TransactionCreate) -> Position:
    if payload.position_id is not None:
        return require_position(db, user_id, payload.position_id)
    if payload.symbol:
        position = find_position_by_symbol(db, user_id, payload.symbol)
        if position:
            return position
    raise NotFoundError("Position not found")


async def create_transaction(
    db: Session,
    user_id: int,
    payload: TransactionCreate,
    *,
    purchase_method: str = "manual",
    schedule_id: Optional[int] = None,
    recalculate: bool = True,
) -> Transaction:
    position = _resolve_position(db, user_id, payload)
    symbol = position.symbol
    currency = resolve_transaction_currency(symbol, position, payload.currency)
    market = determine_market_from_context(position.market, currency, symbol)
    trade_date = normalize_trade_date(payload.date, market)

    amount = payload.amount if payload.amount is not None else payload.shares * payload.price
    exchange_rate = payload.exchange_rate
    if currency == "USD" and exchange_rate is None:
        fx = await get_historical_usd_krw_rate(trade_date)
        exchange_rate = fx["rate"]

    tx = Transaction(
        user_id=user_id,
        position_id=position.id,
        schedule_id=schedule_id,
        symbol=symbol,
        type=payload.type,
        date=trade_date,
        shares=payload.shares,
        price=payload.price,
        amount=amount,
        fee=payload.fee,
        tax=payload.tax,
        total_amount=compute_total_amount(payload.type, amount, payload.fee, payload.tax),
        currency=currency,
        exchange_rate=exchange_rate,
        purchase_method=purchase_method,
        purchase_unit=payload.purchase_unit,
        memo=payload.memo,
        executed_at=datetime.now(timezone.utc),
    )
    db.add(tx)
    db.flush()

    if recalculate:
        recalculate_position(db, position)
    else:
        db.commit()
    db.refresh(tx)
    logger.info("Recorded %s transaction %s on position %s", tx.type, tx.id, position.id)
    return tx


def get_transaction(db: Session, user_id: int, transaction_id: int) -> Transaction | None:
    return (
        db.query(Transaction)
        .filter(Transaction.user_id == user_id, Transaction.id == transaction_id)
        .first()
    )


def list_transactions(
    db: Session,
    user_id: int,
    *,
    symbol: Optional[str] = None,
    type: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    position_id: Optional[int] = None,
    purchase_method: Optional[str] = None,
    limit: Optional[int] = DEFAULT_LIST_LIMIT,
) -> List[Transaction]:
    """Newest first."""
    query = db.query(Transaction).filter(Transaction.user_id == user_id)
    if symbol:
        query = query.filter(Transaction.symbol == symbol.strip().upper())
    if type:
        query = query.filter(Transaction.type == type)
    if start_date is not None:
        query = query.filter(Transaction.date >= start_date)
    if end_date is not None:
        query = query.filter(Transaction.date <= end_date)
    if position_id is not None:
        query = query.filter(Transaction.position_id == position_id)
    if purchase_method:
        query = query.filter(Transaction.purchase_method == purchase_method)
    query = query.order_by(Transaction.date.desc(), Transaction.id.desc())
    if limit:
        query = query.limit(min(int(limit), MAX_LIST_LIMIT))
    return query.all()


def list_position_transactions(db: Session, user_id: int, position_id: int) -> List[Transaction]:
    require_position(db, user_id, position_id)
    return list_transactions(db, user_id, position_id=position_id, limit=None)


def delete_transaction(db: Session, user_id: int, transaction_id: int) -> Position:
    tx = get_transaction(db, user_id, transaction_id)
    if not tx:
        raise NotFoundError("Transaction not found")
    position = require_position(db, user_id, tx.position_id)
    db.delete(tx)
    db.flush()
    return recalculate_position(db, position)


def _empty_bucket() -> Dict[str, float]:
    return {"total_buys": 0.0, "total_sells": 0.0, "total_buy_amount": 0.0, "total_sell_amount": 0.0}


async def calculate_transaction_stats(
    db: Session,
    user_id: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Dict[str, Any]:
    transactions = list_transactions(db, user_id, start_date=start_date, end_date=end_date, limit=None)
    positions = {p.id: p for p in db.query(Position).filter(Position.user_id == user_id).all()}

    buckets = {"USD": _empty_bucket(), "KRW": _empty_bucket()}
    for tx in transactions:
        ccy = resolve_transaction_currency(tx.symbol, positions.get(tx.position_id), tx.currency)
        if tx.type == "buy":
            buckets[ccy]["total_buy_amount"] += tx.amount
            buckets[ccy]["total_buys"] += tx.shares
        elif tx.type == "sell":
            buckets[ccy]["total_sell_amount"] += tx.amount
            buckets[ccy]["total_sells"] += tx.shares

    by_currency = {}
    for ccy, b in buckets.items():
        by_currency[ccy] = {
            **b,
            "average_buy_price": b["total_buy_amount"] / b["total_buys"] if b["total_buys"] > 0 else 0.0,
            "average_sell_price": b["total_sell_amount"] / b["total_sells"] if b["total_sells"] > 0 else 0.0,
        }

    fx = await get_usd_krw_rate()
    rate = fx["rate"]

    def _in(target: str, field: str) -> float:
        return sum(convert_with_rate(buckets[ccy][field], ccy, target, rate) for ccy in buckets)

    converted = {}
    for target in ("USD", "KRW"):
        buy, sell = _in(target, "total_buy_amount"), _in(target, "total_sell_amount")
        converted[target] = {"total_buy_amount": buy, "total_sell_amount": sell, "net_amount": sell - buy}

    return {
        "transaction_count": len(transactions),
        "by_currency": by_currency,
        "combined": {"base_currency": "USD", **converted["USD"]},
        "converted": converted,
        "exchange_rate": {"base": "USD", "quote": "KRW", "rate": rate, "source": fx["source"]},
    }


# ---------------------------
# Timeline
# ---------------------------
TIMELINE_GRANULARITIES = ("week", "month")
TOP_SYMBOLS = 3


def period_bounds(day: date, granularity: str) -> Tuple[date, date]:
    """Monday-Sunday week, or calendar month, containing `day`."""
    if granularity == "week":
        start = day - timedelta(days=day.weekday())
        return start, start + timedelta(days=6)
    start = day.replace(day=1)
    return start, add_months(start, 1) - timedelta(days=1)


def _period_label(start: date, end: date, granularity: str) -> str:
    if granularity == "month":
        return start.strftime("%Y-%m")
    return f"{start.isoformat()} ~ {end.isoformat()}"


def build_timeline(
    transactions: List[Transaction],
    granularity: str,
    rate: float,
    limit: int,
) -> List[Dict[str, Any]]:
    """Group trades per period, newest period first; net amounts are sells minus buys."""
    groups: Dict[date, Dict[str, Any]] = {}
    for tx in transactions:
        start, end = period_bounds(tx.date, granularity)
        g = groups.get(start)
        if g is None:
            g = groups[start] = {
                "start": start,
                "end": end,
                "buy_count": 0,
                "sell_count": 0,
                "auto_count": 0,
                "manual_count": 0,
                "totals": {ccy: {"buy_amount": 0.0, "sell_amount": 0.0} for ccy in ("USD", "KRW")},
                "buy_base": 0.0,
                "sell_base": 0.0,
                "symbols": defaultdict(lambda: {"count": 0, "buy_amount_base": 0.0, "sell_amount_base": 0.0}),
            }

        ccy = resolve_transaction_currency(tx.symbol, None, tx.currency)
        amount = tx.total_amount if tx.total_amount is not None else (tx.amount or 0.0)
        amount_base = convert_with_rate(amount, ccy, "USD", rate)
        sym = g["symbols"][tx.symbol]
        sym["count"] += 1
        if tx.type == "buy":
            g["buy_count"] += 1
            g["totals"][ccy]["buy_amount"] += amount
            g["buy_base"] += amount_base
            sym["buy_amount_base"] += amount_base
        elif tx.type == "sell":
            g["sell_count"] += 1
            g["totals"][ccy]["sell_amount"] += amount
            g["sell_base"] += amount_base
            sym["sell_amount_base"] += amount_base
        if tx.purchase_method == "auto":
            g["auto_count"] += 1
        else:
            g["manual_count"] += 1

    entries: List[Dict[str, Any]] = []
    for start in sorted(groups, reverse=True)[:limit]:
        g = groups[start]
        top = sorted(
            ({"symbol": s, **v} for s, v in g["symbols"].items()),
            key=lambda s: (-s["count"], -(s["buy_amount_base"] + s["sell_amount_base"])),
        )[:TOP_SYMBOLS]
        entries.append(
            {
                "id": f"{granularity}-{start.isoformat()}",
                "label": _period_label(start, g["end"], granularity),
                "granularity": granularity,
                "period_start": start.isoformat(),
                "period_end": g["end"].isoformat(),
                "total_transactions": g["buy_count"] + g["sell_count"],
                "buy_count": g["buy_count"],
                "sell_count": g["sell_count"],
                "auto_count": g["auto_count"],
                "manual_count": g["manual_count"],
                "totals_by_currency": {
                    ccy: {**t, "net_amount": t["sell_amount"] - t["buy_amount"]} for ccy, t in g["totals"].items()
                },
                "net_amount_base": g["sell_base"] - g["buy_base"],
                "top_symbols": top,
            }
        )
    return entries


async def get_transaction_timeline(
    db: Session,
    user_id: int,
    granularity: str = "week",
    months: int = 6,
    limit: Optional[int] = None,
    purchase_method: Optional[str] = None,
    type: Optional[str] = None,
    symbol: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> Dict[str, Any]:
    if granularity not in TIMELINE_GRANULARITIES:
        raise ValueError("granularity must be week or month")
    months = max(1, int(months))
    limit = max(1, int(limit)) if limit else (12 if granularity == "week" else 18)
    start_date = start_date or add_months(date.today(), -months)

    transactions = list_transactions(
        db,
        user_id,
        symbol=symbol,
        type=type,
        start_date=start_date,
        end_date=end_date,
        purchase_method=purchase_method,
        limit=None,
    )
    fx = await get_usd_krw_rate()
    return {
        "entries": build_timeline(transactions, granularity, fx["rate"], limit),
        "granularity": granularity,
        "base_currency": "USD",
        "exchange_rate": {"base": "USD", "quote": "KRW", "rate": fx["rate"], "source": fx["source"]},
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }

# services/ledger.py
"""
Weighted-average-cost ledger.

Pure functions: a position's holdings are always rebuilt by replaying the
full transaction list in trade-date order, never patched incrementally.
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import date
from typing import Any, Iterable, List, Optional

from utils.trading_calendar import to_date

FLOAT_TOLERANCE = 1e-6

# same-day ordering: buys first, then dividends, then sells
_TYPE_ORDER = {"buy": 0, "dividend": 1, "sell": 2}


@dataclass
class PositionMetrics:
    shares: float = 0.0
    average_price: float = 0.0
    total_invested: float = 0.0
    current_price: float = 0.0
    total_value: float = 0.0
    return_rate: float = 0.0
    profit_loss: float = 0.0
    realized_gain: float = 0.0
    dividend_income: float = 0.0
    transaction_count: int = 0
    first_purchase_date: Optional[date] = None
    last_transaction_date: Optional[date] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _get(tx: Any, name: str, default: Any = None) -> Any:
    if isinstance(tx, dict):
        return tx.get(name, default)
    return getattr(tx, name, default)


def _num(x: Any) -> float:
    try:
        v = float(x)
    except (TypeError, ValueError):
        return 0.0
    return v if math.isfinite(v) else 0.0


def calculate_return_rate(total_value: float, total_invested: float) -> float:
    try:
        value = float(total_value)
        invested = float(total_invested)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value) or not math.isfinite(invested) or invested <= 0:
        return 0.0
    return (value - invested) / invested * 100.0


def calculate_average_price(
    current_shares: float,
    current_average: float,
    new_shares: float,
    new_price: float,
) -> float:
    total_shares = current_shares + new_shares
    if total_shares <= 0:
        return 0.0
    return (current_shares * current_average + new_shares * new_price) / total_shares


def sort_transactions(transactions: Iterable[Any]) -> List[Any]:
    # sorted() is stable, so equal keys keep insertion order
    return sorted(
        transactions,
        key=lambda tx: (to_date(_get(tx, "date")), _TYPE_ORDER.get(_get(tx, "type"), 3)),
    )


def aggregate_position_metrics(
    transactions: Iterable[Any],
    current_price: Optional[float] = None,
    previous: Optional[Any] = None,
) -> PositionMetrics:
    """
    Replay `transactions` and return fresh holdings.

    `current_price` is a live quote when available; otherwise the previously
    stored price of `previous` is kept, falling back to the last trade price.
    """
    previous_price = _num(_get(previous, "current_price", 0.0)) if previous is not None else 0.0
    live_price = _num(current_price)

    txs = sort_transactions(transactions)
    if not txs:
        price = live_price if live_price > 0 else previous_price
        return PositionMetrics(
            current_price=price,
            first_purchase_date=_get(previous, "first_purchase_date") if previous is not None else None,
            last_transaction_date=_get(previous, "last_transaction_date") if previous is not None else None,
        )

    shares = 0.0
    total_invested = 0.0
    average_price = 0.0
    realized_gain = 0.0
    dividend_income = 0.0
    last_trade_price = 0.0
    first_purchase_date: Optional[date] = None
    last_transaction_date: Optional[date] = None

    for tx in txs:
        tx_type = _get(tx, "type")
        price = _num(_get(tx, "price"))
        quantity = _num(_get(tx, "shares"))
        tx_date = to_date(_get(tx, "date"))

        if tx_type == "buy":
            if price > 0:
                last_trade_price = price
            total_invested += quantity * price
            shares += quantity
            average_price = total_invested / shares if shares > 0 else 0.0
            if first_purchase_date is None:
                first_purchase_date = tx_date
        elif tx_type == "sell":
            if price > 0:
                last_trade_price = price
            sold = min(quantity, shares)
            cost_basis = average_price * sold
            realized_gain += sold * price - _num(_get(tx, "fee")) - _num(_get(tx, "tax")) - cost_basis
            shares -= sold
            total_invested = max(0.0, total_invested - cost_basis)
            if shares <= FLOAT_TOLERANCE:
                shares = 0.0
                total_invested = 0.0
                average_price = 0.0
        elif tx_type == "dividend":
            amount = _num(_get(tx, "amount"))
            if amount <= 0:
                amount = quantity * price
            dividend_income += amount

        last_transaction_date = tx_date

    if live_price > 0:
        price_now = live_price
    elif previous_price > 0:
        price_now = previous_price
    else:
        price_now = last_trade_price

    total_value = shares * price_now
    return PositionMetrics(
        shares=shares,
        average_price=average_price,
        total_invested=total_invested,
        current_price=price_now,
        total_value=total_value,
        return_rate=calculate_return_rate(total_value, total_invested),
        profit_loss=total_value - total_invested,
        realized_gain=realized_gain,
        dividend_income=dividend_income,
        transaction_count=len(txs),
        first_purchase_date=first_purchase_date or to_date(_get(txs[0], "date")),
        last_transaction_date=last_transaction_date,
    )


def compute_total_amount(tx_type: str, amount: float, fee: float = 0.0, tax: float = 0.0) -> float:
    """Buys debit amount plus costs; sells and dividends credit amount net of costs."""
    if tx_type == "buy":
        return amount + fee + tax
    return max(amount - fee - tax, 0.0)

# utils/trading_calendar.py
from __future__ import annotations

import re
from datetime import date, datetime, timedelta
from typing import Optional, Union
from zoneinfo import ZoneInfo

MARKET_TIMEZONES = {
    "US": "America/New_York",
    "KR": "Asia/Seoul",
    "GLOBAL": "UTC",
}

_KR_SYMBOL_RE = re.compile(r"^[0-9]{4,6}$")
_MAX_SCAN_DAYS = 14

DateLike = Union[str, date, datetime]


def resolve_market(market: Optional[str]) -> str:
    m = (market or "").upper()
    return m if m in MARKET_TIMEZONES else "US"


def to_date(value: DateLike) -> date:
    """Accepts 'YYYY-MM-DD', ISO datetimes, date or datetime objects."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            raise ValueError("date is required")
        return date.fromisoformat(s[:10])
    raise ValueError(f"invalid date: {value!r}")


def get_market_today(market: Optional[str] = None, now: Optional[datetime] = None) -> date:
    tz = ZoneInfo(MARKET_TIMEZONES[resolve_market(market)])
    current = now.astimezone(tz) if now is not None else datetime.now(tz)
    return current.date()


def is_trading_day(value: DateLike, market: Optional[str] = None) -> bool:
    # weekends only; exchange holidays are not modelled
    return to_date(value).weekday() < 5


def adjust_to_next_trading_day(value: DateLike, market: Optional[str] = None) -> date:
    d = to_date(value)
    for _ in range(_MAX_SCAN_DAYS):
        if is_trading_day(d, market):
            break
        d += timedelta(days=1)
    return d


def adjust_to_previous_trading_day(value: DateLike, market: Optional[str] = None) -> date:
    d = to_date(value)
    for _ in range(_MAX_SCAN_DAYS):
        if is_trading_day(d, market):
            break
        d -= timedelta(days=1)
    return d


def is_future_trading_date(value: DateLike, market: Optional[str] = None) -> bool:
    return to_date(value) > get_market_today(market)


def add_months(d: date, months: int) -> date:
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    # clamp to month end (Jan 31 + 1 month -> Feb 28/29)
    for day in range(d.day, 27, -1):
        try:
            return date(year, month, day)
        except ValueError:
            continue
    return date(year, month, min(d.day, 28))


def advance_by_frequency(value: DateLike, frequency: str, steps: int = 1) -> date:
    """Move `steps` periods forward; months count on the calendar and clamp to month end."""
    d = to_date(value)
    if frequency == "daily":
        return d + timedelta(days=steps)
    if frequency == "weekly":
        return d + timedelta(days=7 * steps)
    if frequency == "biweekly":
        return d + timedelta(days=14 * steps)
    if frequency == "monthly":
        return add_months(d, steps)
    if frequency == "quarterly":
        return add_months(d, 3 * steps)
    raise ValueError(f"unsupported frequency: {frequency}")


def is_kr_symbol(symbol: Optional[str]) -> bool:
    return bool(symbol) and bool(_KR_SYMBOL_RE.match(symbol.strip()))


def determine_market_from_context(
    market: Optional[str] = None,
    currency: Optional[str] = None,
    symbol: Optional[str] = None,
) -> str:
    m = (market or "").upper()
    if m in MARKET_TIMEZONES:
        return m
    if (currency or "").upper() == "KRW":
        return "KR"
    if is_kr_symbol(symbol):
        return "KR"
    return "US"

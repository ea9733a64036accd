# services/portfolio/benchmark_service.py
"""Portfolio return next to market benchmarks over the same window."""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

from services.market_data_service import get_close_history
from services.position_service import calculate_portfolio_totals, list_positions
from utils.trading_calendar import add_months, to_date

logger = logging.getLogger(__name__)

MIN_WINDOW_DAYS = 30

INDEX_BENCHMARKS = [
    {"id": "KOSPI", "name": "KOSPI", "symbol": "^KS11", "currency": "KRW"},
    {"id": "SNP_500", "name": "S&P 500", "symbol": "^GSPC", "currency": "USD"},
]
BLEND_ID = "GLOBAL_60_40"
BLEND_WEIGHTS = {"^GSPC": 0.6, "BND": 0.4}


def resolve_window(start: Any = None, end: Any = None, today: Optional[date] = None) -> Tuple[date, date]:
    """Default is the trailing year; windows shorter than 30 days widen to a year before `end`."""
    end_d = to_date(end) if end else (today or date.today())
    start_d = to_date(start) if start else add_months(end_d, -12)
    if (end_d - start_d).days < MIN_WINDOW_DAYS:
        start_d = add_months(end_d, -12)
    return start_d, end_d


def series_return(points: Sequence[Tuple[str, float]], start: date) -> Dict[str, Any]:
    """Percent change from the first close on/after `start` to the last close."""
    valid = [(d, px) for d, px in points or [] if px and px > 0]
    first = next(((d, px) for d, px in valid if d >= start.isoformat()), None)
    last = valid[-1] if valid else None
    if first is None or last is None:
        return {"return_rate": None, "since": start.isoformat(), "last_price": None, "source": "fallback"}
    return {
        "return_rate": (last[1] - first[1]) / first[1] * 100.0,
        "since": first[0],
        "last_price": last[1],
        "source": "yahoo",
    }


def blend_returns(parts: Dict[str, Dict[str, Any]], start: date) -> Dict[str, Any]:
    """Weighted blend; a missing leg counts as 0% and is flagged in the note."""
    missing = [sym for sym in BLEND_WEIGHTS if parts[sym]["return_rate"] is None]
    has_data = len(missing) < len(BLEND_WEIGHTS)
    rate = sum(w * (parts[sym]["return_rate"] or 0.0) for sym, w in BLEND_WEIGHTS.items())
    since = max([start.isoformat()] + [parts[sym]["since"] for sym in BLEND_WEIGHTS])
    return {
        "id": BLEND_ID,
        "name": "Global 60/40",
        "symbol": "0.6 x S&P 500 + 0.4 x BND",
        "currency": "USD",
        "return_rate": rate if has_data else None,
        "since": since,
        "last_price": None,
        "source": "yahoo" if not missing else "fallback",
        "note": f"No data for {', '.join(missing)}; counted as 0%" if missing and has_data else None,
    }


async def get_benchmark_comparisons(start: Any = None, end: Any = None) -> List[Dict[str, Any]]:
    start_d, end_d = resolve_window(start, end)
    symbols = [b["symbol"] for b in INDEX_BENCHMARKS] + list(BLEND_WEIGHTS)
    history = await get_close_history(symbols, start=start_d.isoformat(), end=end_d.isoformat())

    results: List[Dict[str, Any]] = []
    for bench in INDEX_BENCHMARKS:
        results.append({**bench, **series_return(history.get(bench["symbol"], []), start_d), "note": None})
    parts = {sym: series_return(history.get(sym, []), start_d) for sym in BLEND_WEIGHTS}
    results.append(blend_returns(parts, start_d))
    return results


async def compare_with_benchmarks(
    db: Session,
    user_id: int,
    start: Any = None,
    end: Any = None,
) -> Dict[str, Any]:
    positions = list_positions(db, user_id)
    if start is None:
        firsts = [p.first_purchase_date for p in positions if p.first_purchase_date]
        start = min(firsts) if firsts else None
    start_d, end_d = resolve_window(start, end)

    totals = await calculate_portfolio_totals(positions)
    benchmarks = await get_benchmark_comparisons(start_d, end_d)
    portfolio_rate = totals["combined"]["return_rate"]
    for b in benchmarks:
        b["excess_return"] = portfolio_rate - b["return_rate"] if b["return_rate"] is not None else None

    logger.info("Benchmark comparison for user %s from %s", user_id, start_d)
    return {
        "period": {"start_date": start_d.isoformat(), "end_date": end_d.isoformat()},
        "portfolio": {"return_rate": portfolio_rate, "base_currency": "USD"},
        "benchmarks": benchmarks,
        "exchange_rate": totals["exchange_rate"],
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }

# services/portfolio/backtest_service.py
"""
Strategy backtest over the portfolio's daily value series.

The series is today's share counts priced at historical closes, so it shows
how the current basket would have moved, not the realized account history.
Strategies are fixed transforms of the baseline daily return.
"""
from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List, Sequence, Tuple

import pandas as pd
from sqlalchemy.orm import Session

from services.currency_service import convert_with_rate, get_usd_krw_rate
from services.market_data_service import get_close_history, history_to_frame
from services.position_service import list_positions, position_currency

logger = logging.getLogger(__name__)

TRADING_DAYS_PER_YEAR = 252
MIN_POINTS = 10
STRATEGIES = ("baseline", "growth", "defensive", "diversified", "equal")


def calculate_daily_returns(entries: Sequence[Tuple[str, float]]) -> List[Tuple[str, float]]:
    """(date, value) pairs -> (date, simple return); a non-positive previous value yields 0."""
    out: List[Tuple[str, float]] = []
    for (_, prev), (day, cur) in zip(entries, entries[1:]):
        prev_v = prev or 0.0
        cur_v = cur or 0.0
        out.append((day, (cur_v - prev_v) / prev_v if prev_v > 0 else 0.0))
    return out


def apply_strategy(strategy: str, daily_return: float) -> float:
    if strategy == "growth":
        return daily_return * 1.1 + 0.0002
    if strategy == "defensive":
        return daily_return * 0.75
    if strategy == "diversified":
        return daily_return * 0.9 + 0.0005
    if strategy == "equal":
        return daily_return * 0.95
    return daily_return


def compound_returns(returns: Sequence[Tuple[str, float]], strategy: str) -> Dict[str, Any]:
    baseline = scenario = 1.0
    peak_b = peak_s = 1.0
    mdd_b = mdd_s = 0.0
    series: List[Dict[str, Any]] = []
    baseline_returns: List[float] = []
    scenario_returns: List[float] = []

    for day, r in returns:
        sr = apply_strategy(strategy, r)
        baseline *= 1 + r
        scenario *= 1 + sr
        baseline_returns.append(r)
        scenario_returns.append(sr)

        peak_b = max(peak_b, baseline)
        peak_s = max(peak_s, scenario)
        mdd_b = min(mdd_b, (baseline - peak_b) / peak_b)
        mdd_s = min(mdd_s, (scenario - peak_s) / peak_s)

        series.append({"date": day, "baseline": round(baseline, 6), "scenario": round(scenario, 6)})

    return {
        "series": series,
        "baseline_value": baseline,
        "scenario_value": scenario,
        "baseline_returns": baseline_returns,
        "scenario_returns": scenario_returns,
        "max_drawdown_baseline": mdd_b,
        "max_drawdown_scenario": mdd_s,
    }


def calculate_volatility(daily_returns: Sequence[float]) -> float:
    """Annualized population std of daily returns."""
    if not daily_returns:
        return 0.0
    returns = pd.Series(daily_returns, dtype="float64")
    return float(returns.std(ddof=0)) * math.sqrt(TRADING_DAYS_PER_YEAR)


def calculate_annualized_return(total_return: float, days: int) -> float:
    if days <= 0:
        return 0.0
    try:
        value = (1 + total_return) ** (TRADING_DAYS_PER_YEAR / days) - 1
    except (OverflowError, ZeroDivisionError):
        return 0.0
    if isinstance(value, complex) or not math.isfinite(value):
        return 0.0
    return value


def _zero_stats() -> Dict[str, float]:
    return {"total_return": 0.0, "annualized_return": 0.0, "volatility": 0.0, "max_drawdown": 0.0}


def _stats(total: float, days: int, returns: Sequence[float], mdd: float) -> Dict[str, float]:
    return {
        "total_return": round(total * 100, 2),
        "annualized_return": round(calculate_annualized_return(total, days) * 100, 2),
        "volatility": round(calculate_volatility(returns) * 100, 2),
        "max_drawdown": round(mdd * 100, 2),
    }


def run_backtest_on_series(
    entries: Sequence[Tuple[str, float]],
    strategy: str = "baseline",
    start: str = "",
    end: str = "",
    period_days: int = 365,
) -> Dict[str, Any]:
    """Backtest a sorted (date, value) series. Fewer than 10 points gives a zeroed result."""
    if strategy not in STRATEGIES:
        raise ValueError(f"strategy must be one of {', '.join(STRATEGIES)}")

    generated_at = datetime.now(timezone.utc).isoformat()
    if len(entries) < MIN_POINTS:
        return {
            "strategy": strategy,
            "period": {"start_date": start, "end_date": end, "days": period_days},
            "baseline": _zero_stats(),
            "scenario": _zero_stats(),
            "series": [],
            "generated_at": generated_at,
        }

    daily = calculate_daily_returns(entries)
    c = compound_returns(daily, strategy)
    days = len(daily)
    return {
        "strategy": strategy,
        "period": {"start_date": entries[0][0], "end_date": entries[-1][0], "days": days},
        "baseline": _stats(c["baseline_value"] - 1, days, c["baseline_returns"], c["max_drawdown_baseline"]),
        "scenario": _stats(c["scenario_value"] - 1, days, c["scenario_returns"], c["max_drawdown_scenario"]),
        "series": c["series"],
        "generated_at": generated_at,
    }


def build_value_series(
    closes: pd.DataFrame,
    shares: Dict[str, float],
    currencies: Dict[str, str],
    base_currency: str,
    rate: float,
) -> List[Tuple[str, float]]:
    """
    Sum of shares x close per day, converted to base currency; gaps forward-filled.
    The series starts on the first day every held symbol has a close, so a
    symbol that starts quoting later does not show up as a jump in value.
    """
    if closes.empty:
        return []
    held = [s for s in closes.columns if shares.get(s, 0.0) > 0 and closes[s].notna().any()]
    if not held:
        return []
    filled = closes[held].sort_index().ffill().dropna(how="any")
    total = pd.Series(0.0, index=filled.index)
    for sym in held:
        factor = convert_with_rate(1.0, currencies.get(sym, "USD"), base_currency, rate)
        total = total + filled[sym] * shares[sym] * factor
    total = total[total > 0]
    return [(ts.date().isoformat(), float(v)) for ts, v in total.items()]


async def run_backtest(
    db: Session,
    user_id: int,
    period_days: int = 365,
    strategy: str = "baseline",
    base_currency: str = "USD",
) -> Dict[str, Any]:
    if strategy not in STRATEGIES:
        raise ValueError(f"strategy must be one of {', '.join(STRATEGIES)}")

    end_d = date.today()
    start_d = end_d - timedelta(days=period_days)
    positions = [p for p in list_positions(db, user_id) if (p.shares or 0) > 0]

    entries: List[Tuple[str, float]] = []
    if positions:
        history = await get_close_history(
            [p.symbol for p in positions],
            start=start_d.isoformat(),
            end=end_d.isoformat(),
        )
        fx = await get_usd_krw_rate()
        entries = build_value_series(
            history_to_frame(history),
            {p.symbol: p.shares for p in positions},
            {p.symbol: position_currency(p) for p in positions},
            base_currency,
            fx["rate"],
        )
    logger.info("Backtest %s over %d points for user %s", strategy, len(entries), user_id)
    return run_backtest_on_series(entries, strategy, start_d.isoformat(), end_d.isoformat(), period_days)

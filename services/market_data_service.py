# services/market_data_service.py
"""
Market data from Yahoo Finance via yahooquery.

yahooquery is synchronous, so every public coroutine pushes the blocking call
into a worker thread with asyncio.to_thread. Results are cached through the
shared L1/L2 cache as plain JSON; DataFrames are rebuilt on read.
"""
from __future__ import annotations

import asyncio
import logging
import math
import os
import time
from datetime import date, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple, Type

import pandas as pd
from yahooquery import Ticker

from services.cache.cache_utils import cacheable
from utils.trading_calendar import is_kr_symbol, to_date

logger = logging.getLogger(__name__)

QUOTE_TTL_SEC = int(os.getenv("CACHE_QUOTE_TTL_SEC", "60"))
HISTORY_TTL_SEC = int(os.getenv("CACHE_HISTORY_TTL_SEC", "3600"))

# UI periods -> yahooquery periods
PERIODS = {"1m": "1mo", "3m": "3mo", "6m": "6mo", "1y": "1y", "2y": "2y", "5y": "5y"}

History = Dict[str, List[Tuple[str, float]]]


def retry(
    fn: Callable[[], Any],
    *,
    attempts: int = 3,
    delay: float = 0.4,
    backoff: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
) -> Any:
    """
    Retry a function up to `attempts` times with exponential backoff.
    Raises RuntimeError (chained) if all attempts fail.
    """
    attempts = max(1, attempts)
    err: BaseException | None = None

    for i in range(attempts):
        try:
            return fn()
        except exceptions as e:
            err = e
            if i < attempts - 1:
                time.sleep(delay * (backoff ** i))

    raise RuntimeError(f"retry failed after {attempts} attempts") from err


def to_yahoo_symbol(symbol: str, market: Optional[str] = None) -> str:
    """Korean listings are numeric codes; Yahoo wants them suffixed (005930 -> 005930.KS)."""
    sym = (symbol or "").strip().upper()
    if "." in sym:
        return sym
    if is_kr_symbol(sym) or (market or "").upper() == "KR":
        return f"{sym}.KS"
    return sym


def _fnum(x: Any) -> Optional[float]:
    try:
        if x is None:
            return None
        v = float(x)
    except (TypeError, ValueError):
        return None
    return v if math.isfinite(v) else None


# ---------------------------
# Blocking fetchers
# ---------------------------
def _fetch_latest_prices(symbols: List[str]) -> Dict[str, float]:
    yahoo = {to_yahoo_symbol(s): s for s in symbols}
    tq = Ticker(" ".join(yahoo), asynchronous=False, formatted=False, validate=False)
    raw = retry(lambda: tq.price)

    out: Dict[str, float] = {}
    if not isinstance(raw, dict):
        return out
    for ysym, original in yahoo.items():
        node = raw.get(ysym)
        if not isinstance(node, dict):
            continue
        price = _fnum(node.get("regularMarketPrice")) or _fnum(node.get("regularMarketPreviousClose"))
        if price and price > 0:
            out[original] = price
    return out


def _fetch_close_history(
    symbols: List[str],
    period: Optional[str] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> History:
    yahoo = {to_yahoo_symbol(s): s for s in symbols}
    tq = Ticker(" ".join(yahoo), asynchronous=False, formatted=False, validate=False)
    if start is not None:
        # yahooquery's end is exclusive
        df = retry(lambda: tq.history(start=start.isoformat(), end=(end or date.today() + timedelta(days=1)).isoformat(), interval="1d"))
    else:
        df = retry(lambda: tq.history(period=period or "3mo", interval="1d"))

    if not isinstance(df, pd.DataFrame) or df.empty:
        return {}

    df = df.reset_index()
    price_col = "adjclose" if "adjclose" in df.columns and df["adjclose"].notna().any() else "close"
    date_col = next((c for c in df.columns if str(c).lower() == "date"), None)
    if price_col not in df.columns or date_col is None:
        return {}

    df[date_col] = pd.to_datetime(df[date_col], utc=True, errors="coerce")
    df = df.dropna(subset=[date_col, price_col])
    if "symbol" not in df.columns:
        df["symbol"] = next(iter(yahoo))

    out: History = {}
    for ysym, group in df.groupby("symbol"):
        original = yahoo.get(str(ysym).upper())
        if original is None:
            continue
        group = group.sort_values(date_col)
        out[original] = [
            (ts.date().isoformat(), float(px))
            for ts, px in zip(group[date_col], group[price_col])
            if float(px) > 0
        ]
    return out


# ---------------------------
# Public API
# ---------------------------
def _symbols_key(prefix: str, symbols: Iterable[str], *parts: Any) -> str:
    syms = ",".join(sorted({(s or "").upper() for s in symbols if s}))
    tail = ":".join(str(p) for p in parts if p is not None)
    return f"{prefix}:{syms}:{tail}" if tail else f"{prefix}:{syms}"


@cacheable(ttl=QUOTE_TTL_SEC, key_fn=lambda symbols: _symbols_key("quote", symbols))
async def get_latest_prices(symbols: List[str]) -> Dict[str, float]:
    """Latest price per symbol. Symbols Yahoo cannot price are missing from the result."""
    syms = sorted({s.strip().upper() for s in symbols if s and s.strip()})
    if not syms:
        return {}
    try:
        return await asyncio.to_thread(_fetch_latest_prices, syms)
    except RuntimeError as exc:
        logger.warning("Latest price lookup failed for %d symbols: %s", len(syms), exc.__cause__ or exc)
        return {}


@cacheable(
    ttl=HISTORY_TTL_SEC,
    key_fn=lambda symbols, period="3m", start=None, end=None: _symbols_key("history", symbols, period, start, end),
)
async def get_close_history(
    symbols: List[str],
    period: str = "3m",
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> History:
    """Daily closes as {symbol: [(iso_date, close), ...]} in date order."""
    syms = sorted({s.strip().upper() for s in symbols if s and s.strip()})
    if not syms:
        return {}
    start_d = to_date(start) if start else None
    end_d = to_date(end) if end else None
    try:
        return await asyncio.to_thread(_fetch_close_history, syms, PERIODS.get(period, period), start_d, end_d)
    except RuntimeError as exc:
        logger.warning("Close history lookup failed for %d symbols: %s", len(syms), exc.__cause__ or exc)
        return {}


def history_to_frame(history: History) -> pd.DataFrame:
    """index=date, columns=symbol, values=close; NaN where a symbol did not trade."""
    series = {}
    for sym, points in (history or {}).items():
        if not points:
            continue
        idx = pd.to_datetime([p[0] for p in points])
        series[sym] = pd.Series([p[1] for p in points], index=idx, dtype="float64")
    if not series:
        return pd.DataFrame()
    frame = pd.DataFrame(series).sort_index()
    frame = frame[~frame.index.duplicated(keep="last")]
    return frame


async def get_close_frame(symbols: List[str], period: str = "3m") -> pd.DataFrame:
    return history_to_frame(await get_close_history(symbols, period=period))


async def get_price_on_date(symbol: str, on: Any) -> Optional[float]:
    """Close on `on`, or the nearest earlier close within a week (weekends, holidays)."""
    sym = (symbol or "").strip().upper()
    if not sym:
        return None
    target = to_date(on)
    history = await get_close_history(
        [sym],
        start=(target - timedelta(days=7)).isoformat(),
        end=(target + timedelta(days=1)).isoformat(),
    )
    best: Optional[float] = None
    for iso, close in history.get(sym, []):
        if iso <= target.isoformat():
            best = close
    return best

# services/currency_service.py
from __future__ import annotations

import logging
import math
import os
import time
from typing import Any, Dict, Iterable, Optional, Tuple

import httpx

from services.market_data_service import get_price_on_date
from utils.trading_calendar import to_date

logger = logging.getLogger(__name__)

SUPPORTED_CCY = ("USD", "KRW")

FX_API_URL = os.getenv("FX_API_URL", "https://api.exchangerate-api.com/v4/latest/USD")
FX_CACHE_TTL_SEC = int(os.getenv("FX_CACHE_TTL_SEC", "600"))
DEFAULT_FALLBACK_RATE = float(os.getenv("FX_FALLBACK_RATE", "1428.91"))
FX_TIMEOUT_SEC = float(os.getenv("FX_TIMEOUT_SEC", "5"))

_FX_KEY = "USD-KRW"
_YAHOO_FX_SYMBOL = "KRW=X"

# key -> (rate, fetched_at_epoch)
_fx_cache: Dict[str, Tuple[float, float]] = {}


def assert_currency(value: Optional[str], fallback: str = "USD") -> str:
    ccy = (value or "").strip().upper()
    return ccy if ccy in SUPPORTED_CCY else fallback


def resolve_currency(user: Any, requested: Optional[str] = None) -> str:
    """Explicit request wins, then the user's base currency, then USD."""
    if requested and requested.strip().upper() in SUPPORTED_CCY:
        return requested.strip().upper()
    return assert_currency(getattr(user, "currency", None))


def convert_with_rate(amount: float, from_ccy: str, to_ccy: str, rate: float) -> float:
    """`rate` is KRW per USD."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    if from_ccy == to_ccy:
        return value
    try:
        r = float(rate)
    except (TypeError, ValueError):
        return value
    if not math.isfinite(r) or r <= 0:
        return value
    if from_ccy == "USD" and to_ccy == "KRW":
        return value * r
    if from_ccy == "KRW" and to_ccy == "USD":
        return value / r
    return value


def convert_amounts(
    amount: float,
    from_ccy: str,
    rate: float,
    targets: Iterable[str] = SUPPORTED_CCY,
) -> Dict[str, float]:
    out = {ccy: 0.0 for ccy in SUPPORTED_CCY}
    for target in targets:
        out[target] = convert_with_rate(amount, from_ccy, target, rate)
    return out


def summarize_by_currency(items: Iterable[Any]) -> Dict[str, float]:
    """Sum `amount` per currency over dicts or objects with amount/currency."""
    totals = {ccy: 0.0 for ccy in SUPPORTED_CCY}
    for item in items:
        if isinstance(item, dict):
            ccy, amount = item.get("currency"), item.get("amount")
        else:
            ccy, amount = getattr(item, "currency", None), getattr(item, "amount", None)
        if ccy in totals:
            try:
                totals[ccy] += float(amount or 0.0)
            except (TypeError, ValueError):
                continue
    return totals


async def _fetch_live_rate(client: Optional[httpx.AsyncClient] = None) -> Optional[float]:
    async def _get(c: httpx.AsyncClient) -> Optional[float]:
        r = await c.get(FX_API_URL)
        r.raise_for_status()
        data = r.json()
        rates = data.get("rates") if isinstance(data, dict) else None
        if not isinstance(rates, dict):
            return None
        rate = rates.get("KRW")
        return float(rate) if rate is not None else None

    if client is not None:
        return await _get(client)
    async with httpx.AsyncClient(timeout=FX_TIMEOUT_SEC) as c:
        return await _get(c)


async def get_usd_krw_rate(
    force_refresh: bool = False,
    client: Optional[httpx.AsyncClient] = None,
) -> Dict[str, Any]:
    """
    KRW per USD with its source: "cache", "live" or "fallback".
    A failed live fetch reuses the last cached rate (even if stale), else the default.
    """
    now = time.time()
    cached = _fx_cache.get(_FX_KEY)

    if not force_refresh and cached and now - cached[1] < FX_CACHE_TTL_SEC:
        return {"rate": cached[0], "source": "cache"}

    try:
        rate = await _fetch_live_rate(client)
    except (httpx.HTTPError, ValueError) as exc:
        logger.warning("Live FX fetch failed, using fallback: %s", exc)
        rate = None

    if rate is not None and math.isfinite(rate) and rate > 0:
        _fx_cache[_FX_KEY] = (rate, now)
        return {"rate": rate, "source": "live"}

    fallback = cached[0] if cached else DEFAULT_FALLBACK_RATE
    if not cached:
        _fx_cache[_FX_KEY] = (fallback, now)
    return {"rate": fallback, "source": "fallback"}


async def get_historical_usd_krw_rate(on: Any) -> Dict[str, Any]:
    """USD->KRW close on a past date; falls back to the current rate."""
    day = to_date(on)
    rate = await get_price_on_date(_YAHOO_FX_SYMBOL, day)
    if rate is not None and rate > 0:
        return {"rate": rate, "source": "historical", "date": day.isoformat()}

    current = await get_usd_krw_rate()
    return {"rate": current["rate"], "source": current["source"], "date": day.isoformat()}


def clear_currency_cache() -> None:
    _fx_cache.clear()


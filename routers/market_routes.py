# routers/market_routes.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from services.currency_service import get_usd_krw_rate
from services.market_data_service import get_price_on_date
from services.supabase_auth import get_current_db_user
from utils.common_helpers import normalize_symbol
from utils.responses import ok

router = APIRouter()


@router.get("/exchange-rate")
async def exchange_rate(
    force_refresh: bool = Query(False),
    user=Depends(get_current_db_user),
):
    fx = await get_usd_krw_rate(force_refresh=force_refresh)
    return ok({"base": "USD", "quote": "KRW", **fx})


@router.get("/market/historical-price")
async def historical_price(
    symbol: Optional[str] = Query(None),
    on: Optional[date] = Query(None, alias="date"),
    user=Depends(get_current_db_user),
):
    ticker = normalize_symbol(symbol)
    if not ticker or on is None:
        raise HTTPException(status_code=400, detail="symbol and date are required")

    price = await get_price_on_date(ticker, on)
    if price is None:
        raise HTTPException(status_code=404, detail=f"No price found for {ticker} on or before {on.isoformat()}")
    return ok({"symbol": ticker, "date": on.isoformat(), "price": price})

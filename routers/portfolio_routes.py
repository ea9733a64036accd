# routers/portfolio_routes.py
from datetime import date
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from schemas.portfolio import RebalancingRequest, ScenarioRequest
from services.alert_service import get_smart_alerts
from services.currency_service import resolve_currency
from services.portfolio.analysis_service import analyze_portfolio
from services.portfolio.backtest_service import run_backtest
from services.portfolio.benchmark_service import compare_with_benchmarks
from services.portfolio.contribution_service import get_contribution_breakdown
from services.portfolio.correlation_service import DEFAULT_LIMIT, get_correlation_matrix
from services.portfolio.scenario_service import run_scenario_analysis
from services.portfolio.tax_service import get_tax_optimization_plan
from services.supabase_auth import get_current_db_user
from utils.responses import http_error, ok

router = APIRouter()


@router.get("/analysis")
async def portfolio_analysis(
    currency: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(await analyze_portfolio(db, user.id, base_currency=resolve_currency(user, currency)))


@router.post("/rebalancing")
async def portfolio_rebalancing(
    payload: RebalancingRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    analysis = await analyze_portfolio(
        db,
        user.id,
        base_currency=resolve_currency(user, payload.base_currency),
        target_allocation=payload.target_allocation,
    )
    return ok(
        {
            "base_currency": analysis["base_currency"],
            "total_value": analysis["total_value"],
            "target_allocation": payload.target_allocation,
            "suggestions": analysis["rebalancing_suggestions"],
        }
    )


@router.get("/correlation")
async def portfolio_correlation(
    period: str = Query("3m"),
    include_benchmarks: bool = Query(False),
    limit: int = Query(DEFAULT_LIMIT, ge=2, le=30),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        return ok(await get_correlation_matrix(db, user.id, period, include_benchmarks, limit))
    except ValueError as exc:
        raise http_error(exc)


@router.post("/scenario")
async def portfolio_scenario(
    payload: ScenarioRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        result = await run_scenario_analysis(
            db,
            user.id,
            preset=payload.preset,
            market_shift_pct=payload.market_shift_pct,
            usd_shift_pct=payload.usd_shift_pct,
            additional_contribution=payload.additional_contribution,
            base_currency=resolve_currency(user, payload.base_currency),
        )
    except ValueError as exc:
        raise http_error(exc)
    return ok(result)


@router.get("/backtest")
async def portfolio_backtest(
    period_days: int = Query(365, ge=30, le=1825),
    strategy: Literal["baseline", "growth", "defensive", "diversified", "equal"] = Query("baseline"),
    currency: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(
        await run_backtest(
            db,
            user.id,
            period_days=period_days,
            strategy=strategy,
            base_currency=resolve_currency(user, currency),
        )
    )


@router.get("/alerts")
async def portfolio_alerts(
    currency: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(await get_smart_alerts(db, user.id, base_currency=resolve_currency(user, currency)))


@router.get("/contribution")
async def portfolio_contribution(
    period: str = Query("3m"),
    currency: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    try:
        result = await get_contribution_breakdown(
            db, user.id, period=period, base_currency=resolve_currency(user, currency)
        )
    except ValueError as exc:
        raise http_error(exc)
    return ok(result)


@router.get("/comparison")
async def portfolio_benchmark_comparison(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(await compare_with_benchmarks(db, user.id, start=start_date, end=end_date))


@router.get("/tax-optimization")
async def portfolio_tax_optimization(
    target_harvest_amount: Optional[float] = Query(None, ge=0),
    estimated_tax_rate: Optional[float] = Query(None),
    currency: Optional[str] = Query("KRW"),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(
        await get_tax_optimization_plan(
            db,
            user.id,
            target_harvest_amount=target_harvest_amount,
            estimated_tax_rate=estimated_tax_rate,
            base_currency=resolve_currency(user, currency),
        )
    )

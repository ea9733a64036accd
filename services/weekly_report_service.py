# services/weekly_report_service.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
from sqlalchemy.orm import Session

from models.weekly_report import WeeklyReport
from services.ai.advisor_service import (
    attach_insight_to_report,
    build_context,
    build_period_range,
    call_advisor,
    insight_to_dict,
    store_insight,
)
from services.ai.llm_service import LLMService
from services.currency_service import convert_with_rate, get_usd_krw_rate
from services.errors import ExternalServiceError
from services.ledger import calculate_return_rate
from services.position_service import position_currency
from services.transaction_service import list_transactions, resolve_transaction_currency

logger = logging.getLogger(__name__)

WEEK_DAYS = 7
DEFAULT_REPORT_LIMIT = 10


def iso_week_label(d: date) -> str:
    year, week, _ = d.isocalendar()
    return f"{year}-W{week:02d}"


def calculate_price_volatility(prices: List[float]) -> float:
    """Population std of consecutive price returns, in percent."""
    if len(prices) < 2:
        return 0.0
    returns = pd.Series(prices, dtype="float64").pct_change().replace([np.inf, -np.inf], np.nan).dropna()
    if returns.empty:
        return 0.0
    return float(returns.std(ddof=0)) * 100.0


async def generate_weekly_summary(
    db: Session,
    user_id: int,
    start_date: date,
    end_date: date,
    base_currency: str = "USD",
    symbol: Optional[str] = None,
) -> Optional[Dict[str, Any]]:
    """Buy activity in [start_date, end_date]; None when nothing was bought."""
    buys = list_transactions(
        db,
        user_id,
        symbol=symbol,
        type="buy",
        start_date=start_date,
        end_date=end_date,
        limit=None,
    )
    if not buys:
        return None
    buys = sorted(buys, key=lambda t: (t.date, t.id))

    fx = await get_usd_krw_rate()
    rate = fx["rate"]

    def _base(value: float, tx) -> float:
        ccy = resolve_transaction_currency(tx.symbol, tx.position, tx.currency)
        return convert_with_rate(value or 0.0, ccy, base_currency, rate)

    prices = [_base(t.price, t) for t in buys]
    positions = {t.position_id: t.position for t in buys if t.position is not None}
    value = sum(convert_with_rate(p.total_value or 0.0, position_currency(p), base_currency, rate) for p in positions.values())
    invested = sum(convert_with_rate(p.total_invested or 0.0, position_currency(p), base_currency, rate) for p in positions.values())

    return {
        "start_date": start_date,
        "end_date": end_date,
        "base_currency": base_currency,
        "purchase_count": len(buys),
        "total_invested": sum(_base(t.amount, t) for t in buys),
        "total_value": value,
        "average_price": float(np.mean(prices)),
        "return_rate": calculate_return_rate(value, invested),
        "volatility": calculate_price_volatility(prices),
        "highest_price": max(prices),
        "lowest_price": min(prices),
    }


def save_report(
    db: Session,
    user_id: int,
    summary: Dict[str, Any],
    highlights: Optional[List[str]] = None,
    learning_points: Optional[str] = None,
) -> WeeklyReport:
    start, end = summary["start_date"], summary["end_date"]
    report = WeeklyReport(
        user_id=user_id,
        week=iso_week_label(start),
        period=f"{start.isoformat()}_to_{end.isoformat()}",
        start_date=start,
        end_date=end,
        weekly_return=summary.get("return_rate"),
        high_price=summary.get("highest_price"),
        low_price=summary.get("lowest_price"),
        volatility=summary.get("volatility"),
        average_price=summary.get("average_price"),
        total_invested=summary.get("total_invested", 0.0),
        total_value=summary.get("total_value", 0.0),
        purchase_count=summary.get("purchase_count", 0),
        highlights=list(highlights or []),
        learning_points=learning_points,
    )
    db.add(report)
    db.commit()
    db.refresh(report)
    return report


def report_to_dict(report: WeeklyReport) -> Dict[str, Any]:
    return {
        "id": report.id,
        "week": report.week,
        "period": report.period,
        "start_date": report.start_date,
        "end_date": report.end_date,
        "weekly_return": report.weekly_return,
        "high_price": report.high_price,
        "low_price": report.low_price,
        "volatility": report.volatility,
        "average_price": report.average_price,
        "total_invested": report.total_invested,
        "total_value": report.total_value,
        "purchase_count": report.purchase_count,
        "highlights": report.highlights or [],
        "learning_points": report.learning_points,
        "ai_advice": insight_to_dict(report.ai_advice) if report.ai_advice is not None else None,
        "generated_at": report.created_at,
    }


def list_reports(db: Session, user_id: int, limit: int = DEFAULT_REPORT_LIMIT) -> List[Dict[str, Any]]:
    """Newest first, each with its linked AI advice (or None)."""
    reports = (
        db.query(WeeklyReport)
        .filter(WeeklyReport.user_id == user_id)
        .order_by(WeeklyReport.end_date.desc(), WeeklyReport.id.desc())
        .limit(max(1, min(int(limit), 52)))
        .all()
    )
    return [report_to_dict(r) for r in reports]


async def run_weekly_report_job(
    db: Session,
    user_id: int,
    today: Optional[date] = None,
    llm: Optional[LLMService] = None,
    with_advice: bool = True,
) -> Optional[Dict[str, Any]]:
    """
    Summary of the last 7 days -> saved report -> AI advice linked to it.
    Returns None when there was no buy activity. An advisor failure is logged
    and the report is kept without advice.
    """
    start, end = build_period_range(WEEK_DAYS, today)
    summary = await generate_weekly_summary(db, user_id, start, end)
    if summary is None:
        logger.info("Weekly report skipped for user %s: no buys in %s..%s", user_id, start, end)
        return None

    report = save_report(db, user_id, summary)
    if not with_advice:
        return report_to_dict(report)

    try:
        context = await build_context(db, user_id, WEEK_DAYS, today=end)
        advice = await call_advisor(context, llm)
    except ExternalServiceError:
        logger.exception("Weekly report %s saved without AI advice", report.id)
        return report_to_dict(report)

    insight = store_insight(db, user_id, advice, context, source_report_id=report.id)
    report.highlights = advice["news_highlights"]
    report.learning_points = "\n".join(advice["recommendations"]) or None
    db.commit()
    report = attach_insight_to_report(db, user_id, report.id, insight.id)
    logger.info("Weekly report %s generated for user %s", report.id, user_id)
    return report_to_dict(report)

# services/ai/advisor_service.py
"""
AI advisor: a narrative weekly read of the user's portfolio.

Flow: build_context (numbers from the DB) -> build_prompt -> LLM (JSON) ->
normalize_advice -> optionally store as an AIInsight. The LLM only writes
prose around figures we computed; it never sees raw credentials or PII.
"""
from __future__ import annotations

import json
import logging
import os
from datetime import date, timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx
from sqlalchemy.orm import Session

from models.ai_insight import AIInsight
from models.weekly_report import WeeklyReport
from services.ai.llm_service import LLMService, get_llm_service
from services.errors import ExternalServiceError
from services.personalization_service import get_personalization
from services.position_service import calculate_portfolio_totals, list_positions, position_currency
from services.transaction_service import list_transactions
from utils.common_helpers import as_str_list, parse_json_strict, safe_float

logger = logging.getLogger(__name__)

DEFAULT_PERIOD_DAYS = int(os.getenv("AI_ADVISOR_DEFAULT_PERIOD", "7"))
ADVISOR_TEMPERATURE = 0.2
MAX_HIGHLIGHTS = 3
MAX_RECOMMENDATIONS = 3

SYSTEM_PROMPT = "You are a professional stock market analyst and wealth manager. Respond with JSON only."


def json_dumps(obj) -> str:
    return json.dumps(obj, ensure_ascii=False, indent=2, default=str)


def build_period_range(period_days: int, today: Optional[date] = None) -> Tuple[date, date]:
    """Inclusive window ending today: 7 days -> today-6 .. today."""
    end = today or date.today()
    start = end - timedelta(days=max(1, period_days) - 1)
    return start, end


async def build_context(
    db: Session,
    user_id: int,
    period_days: Optional[int] = None,
    tickers: Optional[List[str]] = None,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    applied = period_days if period_days and period_days > 0 else DEFAULT_PERIOD_DAYS
    start, end = build_period_range(applied, today)

    positions = [p for p in list_positions(db, user_id) if (p.shares or 0) > 0]
    totals = await calculate_portfolio_totals(positions)
    combined = totals["combined"]

    transactions = list_transactions(db, user_id, start_date=start, end_date=end, limit=None)
    transactions = sorted(transactions, key=lambda t: (t.date, t.id))

    settings = get_personalization(db, user_id)

    return {
        "period_days": applied,
        "start_date": start.isoformat(),
        "end_date": end.isoformat(),
        "tickers": [t.strip().upper() for t in tickers if t.strip()] if tickers else [p.symbol for p in positions],
        "summary": {
            "base_currency": combined["base_currency"],
            "total_invested": round(combined["total_invested"], 2),
            "total_value": round(combined["total_value"], 2),
            "return_rate": round(combined["return_rate"], 2),
            "position_count": len(positions),
            "exchange_rate": totals["exchange_rate"]["rate"],
        },
        "positions": [
            {
                "symbol": p.symbol,
                "name": p.name,
                "currency": position_currency(p),
                "shares": p.shares,
                "average_price": p.average_price,
                "current_price": p.current_price,
                "total_value": p.total_value,
                "return_rate": round(p.return_rate or 0.0, 2),
            }
            for p in positions
        ],
        "transactions": [
            {
                "date": t.date.isoformat(),
                "symbol": t.symbol,
                "type": t.type,
                "shares": t.shares,
                "price": t.price,
                "amount": t.amount,
                "currency": t.currency,
            }
            for t in transactions
        ],
        "personalization": {
            "risk_profile": settings["risk_profile"],
            "investment_goal": settings["investment_goal"],
            "focus_areas": settings["focus_areas"],
        },
    }


def build_prompt(context: Dict[str, Any], latest_stats: Optional[Dict[str, Any]] = None) -> str:
    parts = [
        "Analyze the portfolio data below and write:",
        "- weeklySummary: 3-4 sentences on how the period went",
        "- newsHighlights: at most 3 one-sentence items on what mattered for these holdings",
        "- signals: whether a sell signal is present, with cause and impact",
        "- recommendations: exactly 3 short bullets for next week",
        "",
        "Tailor the tone to the investor's risk profile and focus areas.",
        "Ground every statement in the numbers provided. Do not invent prices.",
        "",
        "PORTFOLIO DATA:",
        json_dumps(context),
    ]
    if latest_stats:
        parts += ["", "SUPPORTING METRICS:", json_dumps(latest_stats)]
    parts += [
        "",
        "Respond with JSON in exactly this shape:",
        "{",
        '  "weeklySummary": "...",',
        '  "newsHighlights": ["..."],',
        '  "signals": { "sellSignal": false, "reason": "..." },',
        '  "recommendations": ["...", "...", "..."],',
        '  "confidenceScore": 0.0',
        "}",
    ]
    return "\n".join(parts)


def _pick(data: Dict[str, Any], *keys: str) -> Any:
    for k in keys:
        if k in data and data[k] is not None:
            return data[k]
    return None


def normalize_advice(parsed: Dict[str, Any], raw_text: str = "") -> Dict[str, Any]:
    """Accept camelCase or snake_case keys; fill every field with a typed default."""
    signals = _pick(parsed, "signals") or {}
    if not isinstance(signals, dict):
        signals = {}
    sell = _pick(signals, "sellSignal", "sell_signal")
    confidence = safe_float(_pick(parsed, "confidenceScore", "confidence_score", "confidence"))

    return {
        "weekly_summary": str(_pick(parsed, "weeklySummary", "weekly_summary") or "").strip(),
        "news_highlights": as_str_list(_pick(parsed, "newsHighlights", "news_highlights"))[:MAX_HIGHLIGHTS],
        "signals": {
            "sell_signal": sell is True or (isinstance(sell, str) and sell.strip().lower() == "true"),
            "reason": str(_pick(signals, "reason") or "").strip(),
        },
        "recommendations": as_str_list(_pick(parsed, "recommendations"))[:MAX_RECOMMENDATIONS],
        "confidence": confidence,
        "raw_text": raw_text,
    }


async def call_advisor(
    context: Dict[str, Any],
    llm: Optional[LLMService] = None,
    latest_stats: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    try:
        service = llm or get_llm_service()
    except ValueError as e:
        raise ExternalServiceError(f"AI provider is not configured: {e}") from e

    prompt = build_prompt(context, latest_stats)
    try:
        raw = await service.generate_text(system=SYSTEM_PROMPT, user=prompt, temperature=ADVISOR_TEMPERATURE)
    except (httpx.HTTPError, ValueError) as e:
        logger.warning("AI advisor call failed: %s", e)
        raise ExternalServiceError("AI advisor request failed") from e

    try:
        parsed = parse_json_strict(raw)
    except ValueError as e:
        logger.warning("AI advisor returned unparseable output (%d chars)", len(raw or ""))
        raise ExternalServiceError("AI advisor returned invalid JSON") from e

    result = normalize_advice(parsed, raw)
    result["model"] = service.model
    return result


def store_insight(
    db: Session,
    user_id: int,
    result: Dict[str, Any],
    context: Dict[str, Any],
    *,
    model: Optional[str] = None,
    label: Optional[str] = None,
    source_report_id: Optional[int] = None,
) -> AIInsight:
    insight = AIInsight(
        user_id=user_id,
        weekly_summary=result.get("weekly_summary", ""),
        news_highlights=result.get("news_highlights", []),
        signals=result.get("signals", {}),
        recommendations=result.get("recommendations", []),
        confidence=result.get("confidence"),
        raw_text=result.get("raw_text"),
        period=label or f"{context['start_date']}_to_{context['end_date']}",
        model=model or result.get("model") or "",
        source_report_id=source_report_id,
        metadata_json={
            "tickers": context.get("tickers", []),
            "period_days": context.get("period_days"),
            "summary": context.get("summary", {}),
        },
    )
    db.add(insight)
    db.commit()
    db.refresh(insight)
    return insight


def insight_to_dict(insight: AIInsight) -> Dict[str, Any]:
    return {
        "id": insight.id,
        "weekly_summary": insight.weekly_summary,
        "news_highlights": insight.news_highlights or [],
        "signals": insight.signals or {"sell_signal": False, "reason": ""},
        "recommendations": insight.recommendations or [],
        "confidence": insight.confidence,
        "raw_text": insight.raw_text,
        "period": insight.period,
        "model": insight.model,
        "source_report_id": insight.source_report_id,
        "metadata": insight.metadata_json or {},
        "generated_at": insight.created_at,
    }


def list_recent_insights(db: Session, user_id: int, limit: int = 5) -> List[AIInsight]:
    return (
        db.query(AIInsight)
        .filter(AIInsight.user_id == user_id)
        .order_by(AIInsight.created_at.desc(), AIInsight.id.desc())
        .limit(max(1, min(int(limit), 50)))
        .all()
    )


def attach_insight_to_report(db: Session, user_id: int, report_id: int, insight_id: int) -> Optional[WeeklyReport]:
    """None when the report is missing; the report unchanged when the insight is."""
    report = (
        db.query(WeeklyReport)
        .filter(WeeklyReport.user_id == user_id, WeeklyReport.id == report_id)
        .first()
    )
    if not report:
        return None
    insight = (
        db.query(AIInsight)
        .filter(AIInsight.user_id == user_id, AIInsight.id == insight_id)
        .first()
    )
    if not insight:
        return report

    report.ai_advice_id = insight.id
    insight.source_report_id = report.id
    db.commit()
    db.refresh(report)
    return report


async def run_advisor(
    db: Session,
    user_id: int,
    *,
    period_days: Optional[int] = None,
    tickers: Optional[List[str]] = None,
    store: bool = True,
    llm: Optional[LLMService] = None,
) -> Dict[str, Any]:
    context = await build_context(db, user_id, period_days, tickers)
    result = await call_advisor(context, llm)
    stored = store_insight(db, user_id, result, context) if store else None
    logger.info("AI advisor ran for user %s over %s days (stored=%s)", user_id, context["period_days"], bool(stored))
    return {
        "advice": result,
        "stored": insight_to_dict(stored) if stored else None,
        "context": {
            "period_days": context["period_days"],
            "start_date": context["start_date"],
            "end_date": context["end_date"],
            "tickers": context["tickers"],
        },
    }

# services/portfolio/contribution_service.py
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from services.currency_service import get_usd_krw_rate
from services.portfolio.analysis_service import to_holdings
from services.position_service import list_positions

logger = logging.getLogger(__name__)

PERIODS = ("1m", "3m", "6m", "1y")
CORE_SLOTS = 5
REDUCING_SLOTS = 3
SUPPORTING_WEIGHT_PCT = 5.0


def calculate_contribution_entries(holdings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Each holding's profit in base currency, as a share of the whole portfolio value."""
    total = sum(h["total_value"] for h in holdings)
    if not holdings or total <= 0:
        return []
    return [
        {
            "symbol": h["symbol"],
            "name": h["name"] or h["symbol"],
            "market": h["market"],
            "currency": h["currency"],
            "weight_pct": h["total_value"] / total * 100.0,
            "return_pct": h["return_rate"],
            "contribution_value": h["total_value"] - h["total_invested"],
            "contribution_pct": (h["total_value"] - h["total_invested"]) / total * 100.0,
            "investment_value": h["total_invested"],
            "current_value": h["total_value"],
        }
        for h in holdings
    ]


def rank_contribution(entries: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Tag entries: the biggest positive movers are "core", the three worst
    losers "reducing", the rest "supporting" or "watch" by weight.
    """
    by_impact = sorted(entries, key=lambda e: abs(e["contribution_value"]), reverse=True)
    core = {e["symbol"] for e in by_impact[:CORE_SLOTS] if e["contribution_value"] > 0}
    reducing = {e["symbol"] for e in [e for e in by_impact if e["contribution_value"] < 0][:REDUCING_SLOTS]}

    ranked = []
    for e in entries:
        if e["symbol"] in core:
            tag = "core"
        elif e["symbol"] in reducing:
            tag = "reducing"
        elif e["weight_pct"] >= SUPPORTING_WEIGHT_PCT:
            tag = "supporting"
        else:
            tag = "watch"
        ranked.append(
            {**e, "is_top_contributor": e["symbol"] in core, "is_lagging": e["symbol"] in reducing, "tag": tag}
        )
    return ranked


async def get_contribution_breakdown(
    db: Session,
    user_id: int,
    period: str = "3m",
    base_currency: str = "USD",
) -> Dict[str, Any]:
    if period not in PERIODS:
        raise ValueError(f"period must be one of {', '.join(PERIODS)}")

    positions = [p for p in list_positions(db, user_id) if (p.shares or 0) > 0]
    fx = await get_usd_krw_rate()
    holdings = to_holdings(positions, base_currency, fx["rate"])
    entries = rank_contribution(calculate_contribution_entries(holdings))

    total_value = sum(h["total_value"] for h in holdings)
    total_invested = sum(h["total_invested"] for h in holdings)
    total_contribution = sum(e["contribution_value"] for e in entries)
    logger.info("Contribution breakdown for user %s over %d holdings", user_id, len(entries))
    return {
        "period": period,
        "base_currency": base_currency,
        "entries": entries,
        "totals": {
            "total_contribution_value": total_contribution,
            "total_contribution_pct": total_contribution / total_value * 100.0 if total_value > 0 else 0.0,
            "total_invested": total_invested,
            "total_value": total_value,
        },
        "exchange_rate": {"base": "USD", "quote": "KRW", "rate": fx["rate"], "source": fx["source"]},
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }

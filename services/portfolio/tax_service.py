# services/portfolio/tax_service.py
"""
Tax-loss harvesting plan: which losing positions to realize to reach a
harvest target, and which gains they could offset.
"""
from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from services.currency_service import convert_with_rate, get_usd_krw_rate
from services.portfolio.analysis_service import to_holdings
from services.position_service import list_positions

logger = logging.getLogger(__name__)

DEFAULT_HARVEST_TARGET_KRW = 500_000.0
DEFAULT_TAX_RATE_PCT = 22.0
MAX_TAX_RATE_PCT = 60.0
ACTION_ORDER = {"harvest-loss": 0, "offset-gain": 1, "monitor": 2}


def normalize_tax_config(
    target_harvest_amount: Optional[float],
    estimated_tax_rate: Optional[float],
    default_target: float = DEFAULT_HARVEST_TARGET_KRW,
) -> Dict[str, float]:
    target = default_target
    if target_harvest_amount is not None and math.isfinite(target_harvest_amount):
        target = max(0.0, target_harvest_amount)
    rate = DEFAULT_TAX_RATE_PCT
    if estimated_tax_rate is not None and math.isfinite(estimated_tax_rate):
        rate = min(max(estimated_tax_rate, 0.0), MAX_TAX_RATE_PCT)
    return {"target_harvest_amount": target, "estimated_tax_rate": rate}


def build_tax_plan(holdings: List[Dict[str, Any]], target: float, tax_rate: float) -> Dict[str, Any]:
    """Harvest the largest losses first until `target` is reached; the rest of the losers are monitored."""
    losers = sorted((h for h in holdings if h["profit_loss"] < 0), key=lambda h: h["profit_loss"])
    gainers = [h for h in holdings if h["profit_loss"] > 0]

    remaining = target
    achieved = 0.0
    candidates: List[Dict[str, Any]] = []
    for h in losers:
        harvest = min(remaining, abs(h["profit_loss"])) if remaining > 0 else 0.0
        achieved += harvest
        remaining -= harvest
        candidates.append(_candidate(h, harvest, "harvest-loss" if harvest > 0 else "monitor"))
    for h in gainers:
        candidates.append(_candidate(h, 0.0, "offset-gain"))
    candidates.sort(key=lambda c: (ACTION_ORDER[c["action"]], -abs(c["profit_loss"])))

    total_gain = sum(h["profit_loss"] for h in gainers)
    total_loss = sum(h["profit_loss"] for h in losers)
    return {
        "summary": {
            "total_unrealized_gain": total_gain,
            "total_unrealized_loss": total_loss,
            "net_unrealized": total_gain + total_loss,
            "harvest_target": target,
            "harvest_achieved": achieved,
            "estimated_tax_savings": achieved * tax_rate / 100.0,
        },
        "candidates": candidates,
    }


def _candidate(h: Dict[str, Any], harvest: float, action: str) -> Dict[str, Any]:
    return {
        "symbol": h["symbol"],
        "name": h["name"],
        "currency": h["currency"],
        "shares": h["shares"],
        "total_value": h["total_value"],
        "profit_loss": h["profit_loss"],
        "return_rate": h["return_rate"],
        "harvest_amount": harvest,
        "action": action,
    }


async def get_tax_optimization_plan(
    db: Session,
    user_id: int,
    target_harvest_amount: Optional[float] = None,
    estimated_tax_rate: Optional[float] = None,
    base_currency: str = "KRW",
) -> Dict[str, Any]:
    fx = await get_usd_krw_rate()
    default_target = convert_with_rate(DEFAULT_HARVEST_TARGET_KRW, "KRW", base_currency, fx["rate"])
    config = normalize_tax_config(target_harvest_amount, estimated_tax_rate, default_target)

    positions = [p for p in list_positions(db, user_id) if (p.shares or 0) > 0]
    holdings = to_holdings(positions, base_currency, fx["rate"])
    plan = build_tax_plan(holdings, config["target_harvest_amount"], config["estimated_tax_rate"])
    logger.info(
        "Tax plan for user %s: harvest %.2f of %.2f %s",
        user_id, plan["summary"]["harvest_achieved"], config["target_harvest_amount"], base_currency,
    )
    return {
        "base_currency": base_currency,
        "config": config,
        **plan,
        "exchange_rate": {"base": "USD", "quote": "KRW", "rate": fx["rate"], "source": fx["source"]},
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }

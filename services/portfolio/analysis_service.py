# services/portfolio/analysis_service.py
from __future__ import annotations

import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import numpy as np
from sqlalchemy.orm import Session

from models.position import Position
from services.currency_service import convert_with_rate, get_usd_krw_rate
from services.ledger import calculate_return_rate
from services.position_service import list_positions, position_currency

logger = logging.getLogger(__name__)

HOLD_BAND_PP = 2.0
TOP_CONTRIBUTORS = 5


def to_holdings(positions: Iterable[Position], base_currency: str, rate: float) -> List[Dict[str, Any]]:
    """Flatten positions into dicts with money fields in `base_currency`."""
    out: List[Dict[str, Any]] = []
    for p in positions:
        ccy = position_currency(p)
        value = convert_with_rate(p.total_value or 0.0, ccy, base_currency, rate)
        invested = convert_with_rate(p.total_invested or 0.0, ccy, base_currency, rate)
        out.append(
            {
                "id": p.id,
                "symbol": p.symbol,
                "name": p.name,
                "sector": p.sector or "unknown",
                "market": p.market or "US",
                "asset_type": p.asset_type or "stock",
                "currency": ccy,
                "shares": p.shares,
                "total_value": value,
                "total_invested": invested,
                "profit_loss": value - invested,
                "return_rate": p.return_rate or 0.0,
            }
        )
    return out


def _total_value(holdings: List[Dict[str, Any]]) -> float:
    return sum(h["total_value"] for h in holdings)


def _allocation(holdings: List[Dict[str, Any]], field: str) -> List[Dict[str, Any]]:
    buckets: Dict[str, Dict[str, float]] = defaultdict(lambda: {"value": 0.0, "invested": 0.0, "count": 0})
    for h in holdings:
        b = buckets[h.get(field) or "unknown"]
        b["value"] += h["total_value"]
        b["invested"] += h["total_invested"]
        b["count"] += 1

    total = _total_value(holdings)
    rows = [
        {
            field: key,
            "value": b["value"],
            "percentage": (b["value"] / total * 100.0) if total > 0 else 0.0,
            "return_rate": calculate_return_rate(b["value"], b["invested"]),
            "count": int(b["count"]),
        }
        for key, b in buckets.items()
    ]
    return sorted(rows, key=lambda r: r["value"], reverse=True)


def calculate_sector_allocation(holdings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _allocation(holdings, "sector")


def calculate_region_allocation(holdings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _allocation(holdings, "market")


def calculate_asset_allocation(holdings: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return _allocation(holdings, "asset_type")


def calculate_risk_metrics(holdings: List[Dict[str, Any]]) -> Dict[str, float]:
    """
    Cross-sectional risk over position return rates (percent):
    volatility = population std, sharpe = mean / volatility (0% risk-free),
    max_drawdown = magnitude of the worst losing position,
    concentration = HHI on 0-100 weights (10000 = single holding).
    """
    if not holdings:
        return {"volatility": 0.0, "sharpe_ratio": 0.0, "max_drawdown": 0.0, "concentration": 0.0}

    returns = np.array([h["return_rate"] for h in holdings], dtype=float)
    avg = float(returns.mean())
    volatility = float(returns.std())
    sharpe = avg / volatility if volatility > 0 else 0.0
    worst = min(float(r) for r in returns)
    max_drawdown = abs(worst) if worst < 0 else 0.0

    total = _total_value(holdings)
    weights = [(h["total_value"] / total * 100.0) if total > 0 else 0.0 for h in holdings]
    concentration = sum(w ** 2 for w in weights)

    return {
        "volatility": abs(volatility),
        "sharpe_ratio": sharpe,
        "max_drawdown": max_drawdown,
        "concentration": concentration,
    }


def calculate_top_contributors(holdings: List[Dict[str, Any]], limit: int = TOP_CONTRIBUTORS) -> List[Dict[str, Any]]:
    total = _total_value(holdings)
    rows = [
        {
            "symbol": h["symbol"],
            "contribution": h["profit_loss"],
            "weight": (h["total_value"] / total * 100.0) if total > 0 else 0.0,
            "return_rate": h["return_rate"],
        }
        for h in holdings
    ]
    rows.sort(key=lambda r: r["contribution"], reverse=True)
    return rows[:limit]


def calculate_diversification_score(
    sector_allocation: List[Dict[str, Any]],
    region_allocation: List[Dict[str, Any]],
    asset_allocation: List[Dict[str, Any]],
    position_count: int,
) -> int:
    """0-100: holdings count (30), sectors (30), regions (20), asset types (20)."""
    score = 0

    if position_count >= 20:
        score += 30
    elif position_count >= 15:
        score += 25
    elif position_count >= 10:
        score += 20
    elif position_count >= 5:
        score += 15
    else:
        score += position_count * 3

    sector_count = len(sector_allocation)
    max_sector = max((s["percentage"] for s in sector_allocation), default=0.0)
    if sector_count >= 8:
        score += 15
    elif sector_count >= 5:
        score += 10
    else:
        score += sector_count * 2
    if sector_count:
        if max_sector < 30:
            score += 15
        elif max_sector < 40:
            score += 10
        elif max_sector < 50:
            score += 5

    region_count = len(region_allocation)
    max_region = max((r["percentage"] for r in region_allocation), default=0.0)
    score += 10 if region_count >= 3 else region_count * 3
    if region_count:
        if max_region < 60:
            score += 10
        elif max_region < 70:
            score += 7
        elif max_region < 80:
            score += 5

    asset_count = len(asset_allocation)
    max_asset = max((a["percentage"] for a in asset_allocation), default=0.0)
    score += 10 if asset_count >= 3 else asset_count * 3
    if asset_count:
        if max_asset < 70:
            score += 10
        elif max_asset < 80:
            score += 7
        elif max_asset < 90:
            score += 5

    return max(0, min(100, score))


def generate_rebalancing_suggestions(
    holdings: List[Dict[str, Any]],
    target_allocation: Optional[Dict[str, float]] = None,
) -> List[Dict[str, Any]]:
    """
    Buy/sell suggestions against target weights (percent, keyed by symbol).
    Symbols without a target get an equal weight; drifts under 2 pp are held
    and left out. Largest drift first.
    """
    if not holdings:
        return []

    targets = {k.strip().upper(): float(v) for k, v in (target_allocation or {}).items()}
    total = _total_value(holdings)
    default_target = 100.0 / len(holdings)

    suggestions: List[Dict[str, Any]] = []
    for h in holdings:
        current = (h["total_value"] / total * 100.0) if total > 0 else 0.0
        target = targets.get(h["symbol"], default_target)
        diff = current - target
        if abs(diff) < HOLD_BAND_PP:
            continue
        action = "sell" if diff > 0 else "buy"
        reason = (
            f"Above target weight by {abs(diff):.1f}%p"
            if action == "sell"
            else f"Below target weight by {abs(diff):.1f}%p"
        )
        suggestions.append(
            {
                "symbol": h["symbol"],
                "current_weight": current,
                "target_weight": target,
                "action": action,
                "amount": abs(total * diff / 100.0),
                "reason": reason,
            }
        )

    suggestions.sort(key=lambda s: abs(s["current_weight"] - s["target_weight"]), reverse=True)
    return suggestions


def build_analysis(
    holdings: List[Dict[str, Any]],
    base_currency: str,
    target_allocation: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    total_value = _total_value(holdings)
    total_invested = sum(h["total_invested"] for h in holdings)

    sector = calculate_sector_allocation(holdings)
    region = calculate_region_allocation(holdings)
    asset = calculate_asset_allocation(holdings)

    return {
        "base_currency": base_currency,
        "total_value": total_value,
        "total_invested": total_invested,
        "overall_return_rate": calculate_return_rate(total_value, total_invested),
        "sector_allocation": sector,
        "region_allocation": region,
        "asset_allocation": asset,
        "risk_metrics": calculate_risk_metrics(holdings),
        "top_contributors": calculate_top_contributors(holdings),
        "rebalancing_suggestions": generate_rebalancing_suggestions(holdings, target_allocation),
        "diversification_score": calculate_diversification_score(sector, region, asset, len(holdings)),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def analyze_portfolio(
    db: Session,
    user_id: int,
    base_currency: str = "USD",
    target_allocation: Optional[Dict[str, float]] = None,
) -> Dict[str, Any]:
    positions = [p for p in list_positions(db, user_id) if (p.shares or 0) > 0]
    fx = await get_usd_krw_rate()
    holdings = to_holdings(positions, base_currency, fx["rate"])
    result = build_analysis(holdings, base_currency, target_allocation)
    result["exchange_rate"] = {"base": "USD", "quote": "KRW", "rate": fx["rate"], "source": fx["source"]}
    return result

# services/portfolio/scenario_service.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models.position import Position
from services.currency_service import convert_with_rate, get_usd_krw_rate
from services.position_service import list_positions, position_currency

PRESETS: Dict[str, Dict[str, float]] = {
    "bullish": {"market_shift_pct": 5.0, "usd_shift_pct": 1.5},
    "bearish": {"market_shift_pct": -5.0, "usd_shift_pct": -1.0},
    "volatile": {"market_shift_pct": 0.0, "usd_shift_pct": 3.0},
    "custom": {"market_shift_pct": 0.0, "usd_shift_pct": 0.0},
}


def apply_preset(
    preset: str,
    market_shift_pct: Optional[float] = None,
    usd_shift_pct: Optional[float] = None,
    additional_contribution: float = 0.0,
) -> Dict[str, Any]:
    """Explicit shifts override the preset's defaults."""
    if preset not in PRESETS:
        raise ValueError(f"preset must be one of {', '.join(PRESETS)}")
    defaults = PRESETS[preset]
    return {
        "preset": preset,
        "market_shift_pct": defaults["market_shift_pct"] if market_shift_pct is None else float(market_shift_pct),
        "usd_shift_pct": defaults["usd_shift_pct"] if usd_shift_pct is None else float(usd_shift_pct),
        "additional_contribution": float(additional_contribution or 0.0),
    }


def project_position(
    symbol: str,
    currency: str,
    shares: float,
    current_price: float,
    market_shift_pct: float,
    usd_shift_pct: float,
    name: Optional[str] = None,
) -> Dict[str, Any]:
    price_multiplier = 1 + market_shift_pct / 100.0
    currency_multiplier = 1 + usd_shift_pct / 100.0 if currency == "USD" else 1.0
    projected_price = current_price * price_multiplier * currency_multiplier
    current_value = shares * current_price
    projected_value = shares * projected_price
    pl = projected_value - current_value
    return {
        "symbol": symbol,
        "name": name,
        "currency": currency,
        "shares": shares,
        "current_price": current_price,
        "projected_price": projected_price,
        "current_value": current_value,
        "projected_value": projected_value,
        "projected_profit_loss": pl,
        "projected_return_rate": (pl / current_value * 100.0) if current_value > 0 else 0.0,
    }


def run_scenario(
    positions: List[Position],
    config: Dict[str, Any],
    base_currency: str = "USD",
    rate: float = 0.0,
) -> Dict[str, Any]:
    """
    Per-position projections stay in each position's own currency; portfolio
    totals are summed in `base_currency`. The additional contribution is
    assumed to be in `base_currency` too.
    """
    projections = []
    current_total = 0.0
    projected_total = 0.0
    for p in positions:
        ccy = position_currency(p)
        proj = project_position(
            p.symbol,
            ccy,
            p.shares or 0.0,
            p.current_price or 0.0,
            config["market_shift_pct"],
            config["usd_shift_pct"],
            name=p.name,
        )
        projections.append(proj)
        current_total += convert_with_rate(proj["current_value"], ccy, base_currency, rate)
        projected_total += convert_with_rate(proj["projected_value"], ccy, base_currency, rate)

    projected_total += config["additional_contribution"]
    pl = projected_total - current_total

    projections.sort(key=lambda x: x["projected_profit_loss"], reverse=True)
    return {
        "config": config,
        "result": {
            "base_currency": base_currency,
            "current_total_value": current_total,
            "projected_total_value": projected_total,
            "projected_profit_loss": pl,
            "projected_return_rate": (pl / current_total * 100.0) if current_total > 0 else 0.0,
            "additional_contribution": config["additional_contribution"],
            "market_shift_pct": config["market_shift_pct"],
            "usd_shift_pct": config["usd_shift_pct"],
            "positions": projections,
        },
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }


async def run_scenario_analysis(
    db: Session,
    user_id: int,
    preset: str = "custom",
    market_shift_pct: Optional[float] = None,
    usd_shift_pct: Optional[float] = None,
    additional_contribution: float = 0.0,
    base_currency: str = "USD",
) -> Dict[str, Any]:
    config = apply_preset(preset, market_shift_pct, usd_shift_pct, additional_contribution)
    positions = [p for p in list_positions(db, user_id) if (p.shares or 0) > 0]
    fx = await get_usd_krw_rate()
    return run_scenario(positions, config, base_currency=base_currency, rate=fx["rate"])

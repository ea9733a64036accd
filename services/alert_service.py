# services/alert_service.py
"""
Take-profit sell alerts per position, plus the computed smart-alert feed.

Sell alerts fire when a refreshed position reaches its target return. A
trigger-once alert fires a single time until it is re-enabled; a repeating
one waits out a cooldown between firings.
"""
from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from models.position import Position
from models.sell_alert import SellAlert
from schemas.alert import SellAlertSettings
from services.ai.advisor_service import list_recent_insights
from services.errors import NotFoundError
from services.portfolio.analysis_service import analyze_portfolio, to_holdings
from services.position_service import list_positions, position_currency, require_position

logger = logging.getLogger(__name__)

REPEAT_COOLDOWN = timedelta(hours=6)
PENDING_LIMIT = 5

PRICE_MOVE_PCT = 5.0
VOLATILITY_WARN_PCT = 25.0
CONCENTRATION_WEIGHT = 0.25
SEVERITY_ORDER = {"emergency": 0, "important": 1, "info": 2}

DEFAULT_SETTINGS: Dict[str, Any] = {
    "enabled": False,
    "target_return_rate": 0.0,
    "sell_ratio": 100.0,
    "notify_email": None,
    "trigger_once": True,
    "last_triggered_at": None,
}


# ---------------------------
# Settings
# ---------------------------
def get_sell_alert_settings(position: Position) -> Dict[str, Any]:
    return {**DEFAULT_SETTINGS, **(position.sell_alert or {})}


def merge_sell_alert_settings(existing: Optional[Dict[str, Any]], update: SellAlertSettings) -> Dict[str, Any]:
    """Validate an update and fold it over the stored settings. Disabling clears the trigger history."""
    if update.enabled and (update.target_return_rate is None or update.target_return_rate <= 0):
        raise ValueError("target_return_rate must be greater than 0 to enable the alert")
    if update.sell_ratio is not None and not 0 <= update.sell_ratio <= 100:
        raise ValueError("sell_ratio must be between 0 and 100")

    current = {**DEFAULT_SETTINGS, **(existing or {})}
    target = update.target_return_rate if update.target_return_rate is not None else current["target_return_rate"]
    ratio = update.sell_ratio if update.sell_ratio is not None else current["sell_ratio"]
    trigger_once = update.trigger_once if update.trigger_once is not None else current["trigger_once"]
    email = current["notify_email"]
    if update.notify_email is not None:
        email = update.notify_email.strip() or None

    return {
        "enabled": update.enabled,
        "target_return_rate": max(0.0, float(target or 0.0)),
        "sell_ratio": min(100.0, max(0.0, float(ratio))),
        "notify_email": email,
        "trigger_once": bool(trigger_once),
        "last_triggered_at": current["last_triggered_at"] if update.enabled else None,
    }


def update_sell_alert_settings(
    db: Session,
    user_id: int,
    position_id: int,
    payload: SellAlertSettings,
) -> Dict[str, Any]:
    position = require_position(db, user_id, position_id)
    position.sell_alert = merge_sell_alert_settings(position.sell_alert, payload)
    db.commit()
    db.refresh(position)
    logger.info("Sell alert for position %s %s", position.id, "enabled" if payload.enabled else "disabled")
    return get_sell_alert_settings(position)


# ---------------------------
# Evaluation
# ---------------------------
def _parse_ts(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(str(value))
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def should_trigger(settings: Dict[str, Any], return_rate: Optional[float], now: datetime) -> bool:
    if not settings.get("enabled"):
        return False
    target = settings.get("target_return_rate")
    if target is None or return_rate is None or not math.isfinite(return_rate):
        return False
    if return_rate < target:
        return False

    last = _parse_ts(settings.get("last_triggered_at"))
    if last is None:
        return True
    if settings.get("trigger_once", True):
        return False
    return now - last >= REPEAT_COOLDOWN


def evaluate_sell_alerts(
    db: Session,
    user_id: int,
    positions: Iterable[Position],
    now: Optional[datetime] = None,
) -> List[SellAlert]:
    """Record a pending alert for every position that reached its target."""
    now = now or datetime.now(timezone.utc)
    fired: List[SellAlert] = []
    for position in positions:
        settings = get_sell_alert_settings(position)
        if not should_trigger(settings, position.return_rate, now):
            continue

        ratio = min(100.0, max(0.0, settings["sell_ratio"]))
        alert = SellAlert(
            user_id=user_id,
            position_id=position.id,
            symbol=position.symbol,
            currency=position_currency(position),
            current_price=position.current_price or 0.0,
            return_rate=position.return_rate,
            target_return_rate=settings["target_return_rate"],
            sell_ratio=ratio,
            shares_to_sell=(position.shares or 0.0) * ratio / 100.0,
            notify_email=settings["notify_email"],
            status="pending",
        )
        db.add(alert)
        position.sell_alert = {**settings, "last_triggered_at": now.isoformat()}
        fired.append(alert)
        logger.info(
            "Sell alert fired for %s: return %.2f%% >= target %.2f%%",
            position.symbol, position.return_rate, settings["target_return_rate"],
        )

    if fired:
        db.commit()
    return fired


def list_pending_sell_alerts(db: Session, user_id: int, limit: int = PENDING_LIMIT) -> List[SellAlert]:
    return (
        db.query(SellAlert)
        .filter(SellAlert.user_id == user_id, SellAlert.status == "pending")
        .order_by(SellAlert.created_at.desc(), SellAlert.id.desc())
        .limit(max(1, int(limit)))
        .all()
    )


def resolve_sell_alert(db: Session, user_id: int, alert_id: int, action: str) -> SellAlert:
    alert = db.query(SellAlert).filter(SellAlert.user_id == user_id, SellAlert.id == alert_id).first()
    if not alert:
        raise NotFoundError("Sell alert not found")
    if action not in ("dismiss", "complete"):
        raise ValueError("action must be dismiss or complete")
    alert.status = "dismissed" if action == "dismiss" else "completed"
    alert.resolved_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(alert)
    return alert


# ---------------------------
# Smart alerts
# ---------------------------
def _alert(severity: str, title: str, description: str, tags: List[str], **extra: Any) -> Dict[str, Any]:
    return {
        "id": uuid.uuid4().hex,
        "severity": severity,
        "title": title,
        "description": description,
        "tags": tags,
        "symbol": extra.pop("symbol", None),
        "recommended_action": extra.pop("recommended_action", None),
        "data": extra or None,
        "created_at": datetime.now(timezone.utc).isoformat(),
    }


def emergency_alerts(positions: Iterable[Position]) -> List[Dict[str, Any]]:
    alerts: List[Dict[str, Any]] = []
    for p in positions:
        rate = p.return_rate
        if rate is None or not math.isfinite(rate):
            continue

        if rate <= -PRICE_MOVE_PCT:
            alerts.append(_alert(
                "emergency", f"{p.symbol} dropped sharply", f"{p.symbol} is down {rate:.2f}%.",
                ["price-drop"], symbol=p.symbol, recommended_action="Review your stop-loss line",
                return_rate=rate, total_value=p.total_value,
            ))
        elif rate >= PRICE_MOVE_PCT:
            alerts.append(_alert(
                "emergency", f"{p.symbol} surged", f"{p.symbol} is up {rate:.2f}%.",
                ["price-surge"], symbol=p.symbol, recommended_action="Consider taking profit or trimming",
                return_rate=rate, total_value=p.total_value,
            ))

        settings = get_sell_alert_settings(p)
        if not settings["enabled"]:
            continue
        target = settings["target_return_rate"]
        if rate >= target:
            alerts.append(_alert(
                "emergency", f"{p.symbol} reached its target", f"{p.symbol} hit the {target:.2f}% target return.",
                ["target-hit"], symbol=p.symbol, recommended_action="Take profit or raise the target",
                return_rate=rate, target=target,
            ))
        elif settings["trigger_once"] and rate <= -abs(target):
            alerts.append(_alert(
                "emergency", f"{p.symbol} near its stop-loss", f"{p.symbol} fell past -{abs(target):.2f}%.",
                ["stop-loss"], symbol=p.symbol, recommended_action="Cut the loss or reduce the weight",
                return_rate=rate, target=target,
            ))
    return alerts


def important_alerts(
    holdings: List[Dict[str, Any]],
    rebalancing: List[Dict[str, Any]],
    risk_metrics: Dict[str, float],
) -> List[Dict[str, Any]]:
    alerts: List[Dict[str, Any]] = []

    if rebalancing:
        top = rebalancing[:3]
        alerts.append(_alert(
            "important", "Rebalancing recommended",
            "Weights drifted for " + ", ".join(s["symbol"] for s in top),
            ["rebalancing"], recommended_action="Run the rebalancing simulator",
            suggestions=top,
        ))

    volatility = risk_metrics.get("volatility")
    if volatility is not None and math.isfinite(volatility) and volatility > VOLATILITY_WARN_PCT:
        alerts.append(_alert(
            "important", "Portfolio volatility is high", f"Return dispersion is {volatility:.2f}%.",
            ["risk"], recommended_action="Recheck sector and region diversification",
            volatility=volatility, sharpe_ratio=risk_metrics.get("sharpe_ratio"),
        ))

    total = sum(max(0.0, h["total_value"]) for h in holdings)
    heavy = [h for h in holdings if total > 0 and h["total_value"] > 0 and h["total_value"] / total >= CONCENTRATION_WEIGHT]
    if heavy:
        alerts.append(_alert(
            "important", "Concentration risk", ", ".join(h["symbol"] for h in heavy) + " carry a large weight.",
            ["concentration"], recommended_action="Trim the heaviest holdings or add other asset classes",
            concentrated=[
                {"symbol": h["symbol"], "return_rate": h["return_rate"], "total_value": h["total_value"]}
                for h in heavy
            ],
        ))
    return alerts


def info_alerts(portfolio_return: float, recommendations: Optional[List[str]], insight_id: Optional[int]) -> List[Dict[str, Any]]:
    alerts = [
        _alert("info", "Performance summary", f"Portfolio return is {portfolio_return:.2f}%.", ["performance"])
    ]
    if recommendations:
        more = len(recommendations) - 1
        summary = recommendations[0] + (f" (+{more} more)" if more > 0 else "")
        alerts.append(_alert(
            "important", "AI action items", summary, ["ai-action"],
            recommended_action="Open the advisor card for the details", insight_id=insight_id,
        ))
    return alerts


def sort_alerts(alerts: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(alerts, key=lambda a: SEVERITY_ORDER.get(a["severity"], len(SEVERITY_ORDER)))


async def get_smart_alerts(db: Session, user_id: int, base_currency: str = "USD") -> Dict[str, Any]:
    positions = [p for p in list_positions(db, user_id) if (p.shares or 0) > 0]
    analysis = await analyze_portfolio(db, user_id, base_currency=base_currency)
    holdings = to_holdings(positions, base_currency, analysis["exchange_rate"]["rate"])
    insights = list_recent_insights(db, user_id, limit=1)
    latest = insights[0] if insights else None

    alerts = sort_alerts(
        emergency_alerts(positions)
        + important_alerts(holdings, analysis["rebalancing_suggestions"], analysis["risk_metrics"])
        + info_alerts(
            analysis["overall_return_rate"],
            latest.recommendations if latest else None,
            latest.id if latest else None,
        )
    )
    counts = {severity: 0 for severity in SEVERITY_ORDER}
    for a in alerts:
        counts[a["severity"]] += 1
    return {
        "base_currency": base_currency,
        "alerts": alerts,
        "counts": counts,
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }

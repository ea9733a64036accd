# services/personalization_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models.personalization import PersonalizationSettings

logger = logging.getLogger(__name__)

DEFAULT_RISK_PROFILE = "balanced"
DEFAULT_INVESTMENT_GOAL = "balanced"

DEFAULT_FOCUS_AREAS: Dict[str, List[str]] = {
    "conservative": ["risk", "income", "diversification"],
    "balanced": ["return", "risk", "diversification"],
    "aggressive": ["growth", "momentum", "allocation"],
}


def resolve_focus_areas(risk_profile: str, focus_areas: Optional[List[str]] = None) -> List[str]:
    """Explicit non-empty areas win; otherwise the risk profile's defaults."""
    if focus_areas:
        return list(focus_areas)
    return list(DEFAULT_FOCUS_AREAS.get(risk_profile, DEFAULT_FOCUS_AREAS[DEFAULT_RISK_PROFILE]))


def _as_dict(row: Optional[PersonalizationSettings]) -> Dict[str, Any]:
    if row is None:
        return {
            "risk_profile": DEFAULT_RISK_PROFILE,
            "investment_goal": DEFAULT_INVESTMENT_GOAL,
            "focus_areas": resolve_focus_areas(DEFAULT_RISK_PROFILE),
            "updated_at": None,
        }
    risk_profile = row.risk_profile or DEFAULT_RISK_PROFILE
    return {
        "risk_profile": risk_profile,
        "investment_goal": row.investment_goal or DEFAULT_INVESTMENT_GOAL,
        "focus_areas": resolve_focus_areas(risk_profile, row.focus_areas),
        "updated_at": row.updated_at,
    }


def _get_row(db: Session, user_id: int) -> Optional[PersonalizationSettings]:
    return (
        db.query(PersonalizationSettings)
        .filter(PersonalizationSettings.user_id == user_id)
        .first()
    )


def get_personalization(db: Session, user_id: int) -> Dict[str, Any]:
    """Stored settings, or the defaults when the user never saved any (nothing is written)."""
    return _as_dict(_get_row(db, user_id))


def update_personalization(
    db: Session,
    user_id: int,
    *,
    risk_profile: Optional[str] = None,
    investment_goal: Optional[str] = None,
    focus_areas: Optional[List[str]] = None,
) -> Dict[str, Any]:
    row = _get_row(db, user_id)
    if row is None:
        row = PersonalizationSettings(user_id=user_id)
        db.add(row)

    next_profile = risk_profile or row.risk_profile or DEFAULT_RISK_PROFILE
    row.risk_profile = next_profile
    row.investment_goal = investment_goal or row.investment_goal or DEFAULT_INVESTMENT_GOAL
    # stored areas survive a profile change; an empty list resets to the profile defaults
    if focus_areas is not None:
        row.focus_areas = resolve_focus_areas(next_profile, focus_areas)
    elif not row.focus_areas:
        row.focus_areas = resolve_focus_areas(next_profile)

    db.commit()
    db.refresh(row)
    logger.info("Updated personalization for user %s (%s)", user_id, next_profile)
    return _as_dict(row)

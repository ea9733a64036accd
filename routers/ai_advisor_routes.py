# routers/ai_advisor_routes.py
import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from database import get_db
from middleware.rate_limit import AI_ADVISOR_RATE_LIMIT, limiter
from schemas.portfolio import AdvisorRequest
from services.ai.advisor_service import insight_to_dict, list_recent_insights, run_advisor
from services.errors import ExternalServiceError
from services.supabase_auth import get_current_db_user
from utils.responses import http_error, ok

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("")
@limiter.limit(AI_ADVISOR_RATE_LIMIT)
async def run_ai_advisor(
    request: Request,
    payload: AdvisorRequest,
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    """Generate (and by default store) a narrative advice for the recent period."""
    try:
        result = await run_advisor(
            db,
            user.id,
            period_days=payload.period_days,
            tickers=payload.tickers,
            store=payload.store,
        )
    except ExternalServiceError as exc:
        logger.warning("ai_advisor_failed user_id=%s", user.id)
        raise http_error(exc)
    return ok(result["advice"], stored=result["stored"], context=result["context"])


@router.get("/history")
def ai_advisor_history(
    limit: int = Query(5, ge=1, le=50),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok([insight_to_dict(i) for i in list_recent_insights(db, user.id, limit)])

# routers/internal_routes.py
"""Endpoints for the external scheduler; guarded by a shared secret, not user auth."""
import hmac
import logging
import os
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from database import get_db
from schemas.auto_invest import AutomationLogOut, ExecuteRequest
from services.auto_invest_service import execute_due_schedules, list_automation_logs
from utils.responses import ok

logger = logging.getLogger(__name__)

router = APIRouter()


def require_cron_secret(x_cron_secret: Optional[str] = Header(None)) -> None:
    expected = os.getenv("CRON_SECRET")
    if not expected:
        logger.error("CRON_SECRET is not configured; rejecting internal call")
        raise HTTPException(status_code=503, detail="Internal endpoints are not configured")
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, expected):
        raise HTTPException(status_code=401, detail="Invalid cron secret")


@router.post("/auto-invest/execute", dependencies=[Depends(require_cron_secret)])
async def execute_auto_invest(
    payload: Optional[ExecuteRequest] = None,
    db: Session = Depends(get_db),
):
    req = payload or ExecuteRequest()
    result = await execute_due_schedules(db, run_date=req.run_date, dry_run=req.dry_run, user_id=req.user_id)
    return ok(result)


@router.get("/auto-invest/logs", dependencies=[Depends(require_cron_secret)])
def auto_invest_logs(
    user_id: Optional[int] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    logs = list_automation_logs(db, user_id=user_id, limit=limit)
    return ok([AutomationLogOut.model_validate(log).model_dump() for log in logs])

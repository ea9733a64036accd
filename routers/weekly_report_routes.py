# routers/weekly_report_routes.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from database import get_db
from services.supabase_auth import get_current_db_user
from services.weekly_report_service import list_reports, run_weekly_report_job
from utils.responses import ok

router = APIRouter()


@router.get("")
def get_weekly_reports(
    limit: int = Query(10, ge=1, le=52),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    return ok(list_reports(db, user.id, limit))


@router.post("/generate")
async def generate_weekly_report(
    end_date: Optional[date] = Query(None, description="Last day of the 7-day window (default today)"),
    with_advice: bool = Query(True),
    db: Session = Depends(get_db),
    user=Depends(get_current_db_user),
):
    report = await run_weekly_report_job(db, user.id, today=end_date, with_advice=with_advice)
    if report is None:
        return ok(None, message="No buy activity in the period")
    return ok(report)

# schemas/auto_invest.py
from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from schemas.position import Currency, Frequency


class ScheduleCreate(BaseModel):
    frequency: Frequency
    amount: float = Field(gt=0)
    currency: Optional[Currency] = None
    effective_from: date
    note: Optional[str] = Field(default=None, max_length=500)
    backfill: bool = False


class ScheduleUpdate(BaseModel):
    frequency: Optional[Frequency] = None
    amount: Optional[float] = Field(default=None, gt=0)
    effective_from: Optional[date] = None
    is_active: Optional[bool] = None
    note: Optional[str] = Field(default=None, max_length=500)


class ScheduleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position_id: int
    frequency: str
    amount: float
    currency: str
    effective_from: date
    effective_to: Optional[date] = None
    next_due_date: Optional[date] = None
    last_executed: Optional[date] = None
    is_active: bool
    note: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ReapplyRequest(BaseModel):
    schedule_id: int
    effective_from: date
    price_per_share: Optional[float] = Field(default=None, gt=0)


class ExecuteRequest(BaseModel):
    run_date: Optional[date] = None
    dry_run: bool = False
    user_id: Optional[int] = None


class AutomationLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position_id: Optional[int] = None
    schedule_id: Optional[int] = None
    symbol: Optional[str] = None
    scheduled_date: Optional[date] = None
    amount: float
    currency: str
    status: Literal["success", "skipped", "preview", "error"]
    message: Optional[str] = None
    details: Optional[dict] = None
    dry_run: bool
    triggered_at: datetime

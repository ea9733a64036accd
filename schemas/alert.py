# schemas/alert.py
from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class SellAlertSettings(BaseModel):
    enabled: bool = False
    target_return_rate: Optional[float] = None
    sell_ratio: Optional[float] = None
    notify_email: Optional[str] = Field(default=None, max_length=320)
    trigger_once: Optional[bool] = None


class SellAlertOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position_id: int
    symbol: str
    currency: str
    current_price: float
    return_rate: float
    target_return_rate: float
    sell_ratio: float
    shares_to_sell: float
    notify_email: Optional[str] = None
    status: str
    created_at: datetime
    resolved_at: Optional[datetime] = None


class SellAlertAction(BaseModel):
    action: Literal["dismiss", "complete"]

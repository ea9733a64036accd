# schemas/position.py
from __future__ import annotations

import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

Market = Literal["US", "KR", "GLOBAL"]
AssetType = Literal["stock", "etf", "reit", "fund"]
Currency = Literal["USD", "KRW"]
PurchaseMethod = Literal["manual", "auto"]
Frequency = Literal["daily", "weekly", "biweekly", "monthly", "quarterly"]


def _normalize_symbol(value: str) -> str:
    symbol = (value or "").strip().upper()
    if not symbol or len(symbol) > 20:
        raise ValueError("symbol must be 1-20 characters")
    return symbol


class StockInfo(BaseModel):
    symbol: str
    name: str = ""
    market: Optional[Market] = None
    exchange: str = ""
    asset_type: AssetType = "stock"
    sector: Optional[str] = None
    currency: Optional[Currency] = None

    @field_validator("symbol")
    @classmethod
    def validate_symbol(cls, value: str) -> str:
        return _normalize_symbol(value)


class InitialPurchase(BaseModel):
    date: dt.date
    shares: float = Field(gt=0)
    price: float = Field(gt=0)
    amount: Optional[float] = Field(default=None, ge=0)
    fee: float = Field(default=0.0, ge=0)
    tax: float = Field(default=0.0, ge=0)
    exchange_rate: Optional[float] = Field(default=None, gt=0)


class AutoInvestConfig(BaseModel):
    frequency: Frequency
    amount: float = Field(gt=0)
    start_date: dt.date
    # used when no historical close exists for a scheduled date
    fallback_price: Optional[float] = Field(default=None, gt=0)


class PositionCreate(BaseModel):
    stock: StockInfo
    purchase_method: PurchaseMethod = "manual"
    initial_purchase: Optional[InitialPurchase] = None
    auto_invest: Optional[AutoInvestConfig] = None

    @model_validator(mode="after")
    def check_purchase_info(self) -> "PositionCreate":
        if self.purchase_method == "manual" and self.initial_purchase is None:
            raise ValueError("initial_purchase is required for manual positions")
        if self.purchase_method == "auto" and self.auto_invest is None:
            raise ValueError("auto_invest is required for auto positions")
        return self


class PositionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    symbol: str
    name: str
    market: str
    exchange: str
    asset_type: str
    sector: Optional[str] = None
    currency: str
    shares: float
    average_price: float
    total_invested: float
    current_price: float
    total_value: float
    return_rate: float
    profit_loss: float
    realized_gain: float
    dividend_income: float
    purchase_method: str
    first_purchase_date: Optional[dt.date] = None
    last_transaction_date: Optional[dt.date] = None
    transaction_count: int
    created_at: dt.datetime
    updated_at: dt.datetime

# schemas/transaction.py
from __future__ import annotations

import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TransactionType = Literal["buy", "sell", "dividend"]


class TransactionCreate(BaseModel):
    position_id: Optional[int] = None
    symbol: Optional[str] = None
    type: TransactionType
    date: dt.date
    shares: float = Field(default=0.0, ge=0)
    price: float = Field(default=0.0, ge=0)
    amount: Optional[float] = Field(default=None, ge=0)
    fee: float = Field(default=0.0, ge=0)
    tax: float = Field(default=0.0, ge=0)
    currency: Optional[str] = None
    exchange_rate: Optional[float] = Field(default=None, gt=0)
    purchase_unit: Literal["shares", "amount"] = "shares"
    memo: Optional[str] = Field(default=None, max_length=500)

    @field_validator("symbol")
    @classmethod
    def normalize_symbol(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        symbol = value.strip().upper()
        return symbol or None

    @model_validator(mode="after")
    def check_quantities(self) -> "TransactionCreate":
        if self.type in ("buy", "sell") and (self.shares <= 0 or self.price <= 0):
            raise ValueError("shares and price must be positive for buy/sell")
        if self.type == "dividend" and not (self.amount or self.shares * self.price):
            raise ValueError("amount is required for dividends")
        return self


class TransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    position_id: int
    schedule_id: Optional[int] = None
    symbol: str
    type: str
    date: dt.date
    shares: float
    price: float
    amount: float
    fee: float
    tax: float
    total_amount: float
    currency: str
    exchange_rate: Optional[float] = None
    purchase_method: str
    purchase_unit: str
    memo: Optional[str] = None
    executed_at: dt.datetime
    created_at: dt.datetime

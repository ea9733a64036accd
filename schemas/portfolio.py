from __future__ import annotations

from typing import Dict, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from schemas.position import Currency

ScenarioPreset = Literal["bullish", "bearish", "volatile", "custom"]


class RebalancingRequest(BaseModel):
    target_allocation: Dict[str, float] = Field(default_factory=dict)
    base_currency: Optional[Currency] = None

    @field_validator("target_allocation")
    @classmethod
    def check_weights(cls, value: Dict[str, float]) -> Dict[str, float]:
        out: Dict[str, float] = {}
        for symbol, weight in value.items():
            if weight < 0 or weight > 100:
                raise ValueError("target weights must be between 0 and 100")
            out[symbol.strip().upper()] = weight
        if sum(out.values()) > 100.0001:
            raise ValueError("target weights must not exceed 100 in total")
        return out


class ScenarioRequest(BaseModel):
    preset: ScenarioPreset = "custom"
    market_shift_pct: Optional[float] = Field(default=None, ge=-100)
    usd_shift_pct: Optional[float] = Field(default=None, ge=-100)
    additional_contribution: float = Field(default=0.0, ge=0)
    base_currency: Optional[Currency] = None


class AdvisorRequest(BaseModel):
    period_days: Optional[int] = Field(default=None, gt=0, le=365)
    tickers: Optional[list[str]] = None
    store: bool = True

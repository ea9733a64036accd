from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

RiskProfile = Literal["conservative", "balanced", "aggressive"]
InvestmentGoal = Literal["growth", "income", "balanced", "capital-preservation"]


class PersonalizationUpdate(BaseModel):
    risk_profile: Optional[RiskProfile] = None
    investment_goal: Optional[InvestmentGoal] = None
    focus_areas: Optional[list[str]] = None

    @field_validator("focus_areas")
    @classmethod
    def drop_blank_areas(cls, value: Optional[list[str]]) -> Optional[list[str]]:
        if value is None:
            return value
        return [v.strip() for v in value if isinstance(v, str) and v.strip()]

    @model_validator(mode="after")
    def require_one_field(self) -> "PersonalizationUpdate":
        if self.risk_profile is None and self.investment_goal is None and self.focus_areas is None:
            raise ValueError("at least one field is required")
        return self


class PersonalizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    risk_profile: RiskProfile
    investment_goal: str
    focus_areas: list[str]
    updated_at: Optional[datetime] = None

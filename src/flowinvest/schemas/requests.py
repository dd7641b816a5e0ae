"""
Schemas for inbound analysis requests.
"""

from __future__ import annotations

from typing import List, Union

from pydantic import ConfigDict, Field, field_validator

from flowinvest.schemas.analysis import CamelModel
from flowinvest.services.sanitizer import parse_number


class UserProfile(CamelModel):
    name: str | None = None
    experience: str | None = None
    risk_tolerance: str | None = None
    interests: List[str] = Field(default_factory=list)
    primary_goal: str | None = None
    goals: List[str] = Field(default_factory=list)

    @field_validator("interests", "goals", mode="before")
    @classmethod
    def _coerce_list(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            return [part.strip() for part in value.split(",") if part.strip()]
        return value


class InvestmentData(CamelModel):
    name: str = Field(..., min_length=1)
    type: str = "Unknown"
    amount: float = 0.0
    duration: str | None = None
    date: str | None = None
    description: str | None = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value):
        return parse_number(value, 0.0)


class PropertyData(CamelModel):
    country: str | None = None
    city: str | None = None
    street: str | None = None
    object_type: str | None = None
    sqm: float | None = None
    year_of_construction: int | None = None
    last_renovation: int | None = None
    net_rent: float | None = None
    apportionable_costs: float | None = None
    non_apportionable_costs: float | None = None
    vacancy: float | None = None
    purchase_price: float | None = None
    market_price: float | None = None
    residual_debt: float | None = None
    interest: float | None = None
    repayment_rate: float | None = None
    interest_fixation: int | None = None


class AnalysisRequest(CamelModel):
    """Everything needed to build one prompt. Immutable once constructed."""

    model_config = ConfigDict(frozen=True)

    subject: Union[InvestmentData, List[InvestmentData], PropertyData, str]
    profile: UserProfile = Field(default_factory=UserProfile)
    notes: str | None = None

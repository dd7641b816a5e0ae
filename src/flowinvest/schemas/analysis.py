"""
Schemas for sanitized model analyses.

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_payload(self) -> dict:
        """Serialize with wire (camelCase) names, dropping unset optionals."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)


class RoiScenarios(CamelModel):
    pessimistic: float = 0.0
    realistic: float = 0.0
    optimistic: float = 0.0


class Recommendation(CamelModel):
    name: str
    reason: str = ""


class StructuredAnalysis(CamelModel):
    grade: str
    risk_score: int = Field(..., ge=1, le=10)
    roi_estimate: float
    roi_scenarios: RoiScenarios
    explanation: Union[str, List[str]]
    risk_explanation: str | None = None
    recommendations: List[Recommendation] = Field(default_factory=list)


class InvestmentAnalysis(StructuredAnalysis):
    name: str
    type: str
    amount: float = 0.0
    duration: str = "Unknown"
    date: str | None = None
    source: str | None = None
    analysis_date: datetime | None = None


class PortfolioAnalysis(StructuredAnalysis):
    analysis: Union[str, List[str]]
    validated: bool = False
    attempts: int = 0


class StressTestResult(StructuredAnalysis):
    analysis: Union[str, List[str]]


class ScenarioNote(CamelModel):
    """Plain-text stress-test answer (rejected scenario or unparseable output)."""

    analysis: str


class RealEstateAnalysis(StructuredAnalysis):
    cashflow: float = 0.0
    cashflow_after_mortgage: float = 0.0


class ExtractedHolding(CamelModel):
    name: str
    type: str
    amount: float
    date: str
    duration: str

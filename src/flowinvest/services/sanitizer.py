"""
Coerce loosely-typed model output into canonical, fully-populated analyses.

Every decoder here is total: whatever shape a field arrives in (number,
string, missing, nested junk) it returns a typed value, falling back to the
defaults held in ``SanitizerDefaults``. Fields are decoded independently so
one malformed field never blocks the others.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping

from flowinvest.schemas.analysis import (
    InvestmentAnalysis,
    Recommendation,
    RealEstateAnalysis,
    RoiScenarios,
    StructuredAnalysis,
)

DURATIONS = ("Short-term (0-1 year)", "Mid-term (1-5 years)", "Long-term (5+ years)")
STRICT_GRADES = ("A", "B", "C", "D", "F")

_MODIFIED_GRADE = re.compile(r"^[A-DF][+-]?$")
_NON_NUMERIC = re.compile(r"[^0-9.\-]")
_LEADING_FLOAT = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)")
_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")


class GradeScale(str, Enum):
    STRICT = "strict"  # A, B, C, D, F
    MODIFIED = "modified"  # letter plus optional +/- (A+, B-, ...)


@dataclass(frozen=True)
class SanitizerDefaults:
    risk_score: int = 5
    risk_min: int = 1
    risk_max: int = 10
    risk_keywords: tuple[tuple[str, int], ...] = (("low", 3), ("moderate", 6), ("high", 8))
    roi_estimate: float = 0.0
    roi_multipliers: tuple[float, float, float] = (0.8, 1.0, 1.2)
    strict_grade_sentinel: str = "N/A"
    modified_grade_sentinel: str = "-"
    duration: str = "Unknown"
    explanation: str = "No explanation provided."
    analysis: str = "Analysis not available."
    name: str = "Investment from Screenshot"
    type: str = "Unknown"
    allowed_durations: tuple[str, ...] = DURATIONS
    # Used when a per-investment model call fails outright.
    failed_grade: str = "B"
    failed_explanation: str = "Analysis could not be completed for this investment."
    failed_risk_explanation: str = "Default risk assessment applied."


DEFAULTS = SanitizerDefaults()


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite_float(value: Any) -> float | None:
    # Huge JSON integers overflow float(); treat them like NaN/inf.
    try:
        number = float(value)
    except (OverflowError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def parse_number(value: Any, default: float = 0.0) -> float:
    """
    Decode a number that may arrive as a formatted string ("$1,234.50", "12%").

    Strings keep only digits, '.' and '-' before parsing the leading float.
    """
    if _is_number(value):
        number = _finite_float(value)
    elif isinstance(value, str):
        match = _LEADING_FLOAT.match(_NON_NUMERIC.sub("", value))
        number = _finite_float(match.group(0)) if match else None
    else:
        number = None
    return default if number is None else number


def coerce_risk_score(value: Any, defaults: SanitizerDefaults = DEFAULTS) -> int:
    score: float | None = None
    if _is_number(value):
        score = _finite_float(value)
    elif isinstance(value, str):
        lowered = value.lower()
        for keyword, keyword_score in defaults.risk_keywords:
            if keyword in lowered:
                score = keyword_score
                break
        else:
            match = _LEADING_INT.match(lowered)
            if match:
                score = _finite_float(match.group(1))
    if score is None:
        return defaults.risk_score
    return int(max(defaults.risk_min, min(defaults.risk_max, round(score))))


def coerce_grade(value: Any, scale: GradeScale = GradeScale.STRICT, defaults: SanitizerDefaults = DEFAULTS) -> str:
    if scale is GradeScale.STRICT:
        if isinstance(value, str) and value in STRICT_GRADES:
            return value
        return defaults.strict_grade_sentinel
    if isinstance(value, str):
        candidate = value.strip().upper()
        if _MODIFIED_GRADE.match(candidate):
            return candidate
    return defaults.modified_grade_sentinel


def coerce_duration(value: Any, defaults: SanitizerDefaults = DEFAULTS) -> str:
    if isinstance(value, str) and value in defaults.allowed_durations:
        return value
    return defaults.duration


def coerce_text(value: Any, fallback: str) -> str:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return fallback


def coerce_text_or_lines(value: Any, fallback: str) -> str | list[str]:
    """Free-text fields may also arrive as a list of bullet strings."""
    if isinstance(value, list):
        lines = [item.strip() for item in value if isinstance(item, str) and item.strip()]
        return lines or fallback
    return coerce_text(value, fallback)


def coerce_roi_scenarios(value: Any, roi_estimate: float, defaults: SanitizerDefaults = DEFAULTS) -> RoiScenarios:
    derived = [roi_estimate * multiplier for multiplier in defaults.roi_multipliers]
    if not isinstance(value, Mapping):
        return RoiScenarios(pessimistic=derived[0], realistic=derived[1], optimistic=derived[2])
    return RoiScenarios(
        pessimistic=parse_number(value.get("pessimistic"), derived[0]),
        realistic=parse_number(value.get("realistic"), derived[1]),
        optimistic=parse_number(value.get("optimistic"), derived[2]),
    )


def coerce_recommendations(value: Any) -> list[Recommendation]:
    if not isinstance(value, list):
        return []
    recommendations: list[Recommendation] = []
    for item in value:
        if isinstance(item, str) and item.strip():
            recommendations.append(Recommendation(name=item.strip()))
        elif isinstance(item, Mapping) and isinstance(item.get("name"), str) and item["name"].strip():
            reason = item.get("reason")
            recommendations.append(
                Recommendation(name=item["name"].strip(), reason=reason.strip() if isinstance(reason, str) else "")
            )
    return recommendations


def _roi_estimate(raw: Mapping[str, Any], defaults: SanitizerDefaults) -> float:
    if raw.get("roiEstimate") is None and isinstance(raw.get("roiScenarios"), Mapping):
        # Some prompts only ask for scenarios; use the realistic case.
        return parse_number(raw["roiScenarios"].get("realistic"), defaults.roi_estimate)
    return parse_number(raw.get("roiEstimate"), defaults.roi_estimate)


def _structured_fields(raw: Any, scale: GradeScale, defaults: SanitizerDefaults) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        raw = {}
    roi_estimate = _roi_estimate(raw, defaults)
    risk_explanation = raw.get("riskExplanation")
    return {
        "grade": coerce_grade(raw.get("grade"), scale, defaults),
        "risk_score": coerce_risk_score(raw.get("riskScore"), defaults),
        "roi_estimate": roi_estimate,
        "roi_scenarios": coerce_roi_scenarios(raw.get("roiScenarios"), roi_estimate, defaults),
        "explanation": coerce_text_or_lines(raw.get("explanation"), defaults.explanation),
        "risk_explanation": risk_explanation.strip() if isinstance(risk_explanation, str) else None,
        "recommendations": coerce_recommendations(raw.get("recommendations")),
    }


def sanitize(
    raw: Any,
    scale: GradeScale = GradeScale.STRICT,
    defaults: SanitizerDefaults = DEFAULTS,
) -> StructuredAnalysis:
    """Build a complete ``StructuredAnalysis`` from whatever the model returned."""
    return StructuredAnalysis(**_structured_fields(raw, scale, defaults))


def sanitize_investment(
    raw: Any,
    scale: GradeScale = GradeScale.STRICT,
    defaults: SanitizerDefaults = DEFAULTS,
) -> InvestmentAnalysis:
    fields = _structured_fields(raw, scale, defaults)
    if not isinstance(raw, Mapping):
        raw = {}
    date = raw.get("date") or raw.get("purchaseDate")
    return InvestmentAnalysis(
        **fields,
        name=coerce_text(raw.get("name"), defaults.name),
        type=coerce_text(raw.get("type"), defaults.type),
        amount=parse_number(raw.get("amount"), 0.0),
        duration=coerce_duration(raw.get("duration"), defaults),
        date=date if isinstance(date, str) else None,
    )


def sanitize_real_estate(raw: Any, defaults: SanitizerDefaults = DEFAULTS) -> RealEstateAnalysis:
    fields = _structured_fields(raw, GradeScale.STRICT, defaults)
    if not isinstance(raw, Mapping):
        raw = {}
    return RealEstateAnalysis(
        **fields,
        cashflow=parse_number(raw.get("cashflow"), 0.0),
        cashflow_after_mortgage=parse_number(raw.get("cashflowAfterMortgage"), 0.0),
    )

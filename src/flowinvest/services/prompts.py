"""
Prompt templates and builders for every analysis mode.

Inputs arrive as validated pydantic models; optional fields that are missing
render as "Not provided" rather than leaking placeholder values into the prompt.
"""

from __future__ import annotations

from typing import Any, Sequence

from flowinvest.schemas.requests import InvestmentData, PropertyData, UserProfile
from flowinvest.services.extraction import fence_json
from flowinvest.services.sanitizer import DURATIONS

MISSING = "Not provided"

SYSTEM_PROMPTS = {
    "investment": "You are a financial analyst that provides investment analysis.",
    "portfolio": (
        "You are a financial analyst that provides portfolio analysis and recommendations "
        "in a structured JSON format."
    ),
    "stress_test": "You are a financial analyst that provides stress test analysis in a structured JSON format.",
    "scenario_validation": "You are a financial analyst that validates scenarios for stress testing.",
    "real_estate": "You are a real estate investment analyst that answers in JSON.",
    "holdings_extraction": (
        "You are a helpful assistant that analyzes portfolio screenshots and returns "
        "investment data in a specific JSON format."
    ),
    "screenshot_analysis": (
        "You are a financial data extraction assistant. Always return a JSON array of investments, "
        "one object per investment, never summarize or merge, and never wrap in markdown."
    ),
}

BULLET_SYSTEM_PROMPT = """You are a financial analyst that grades portfolios and answers in strict JSON.
The "analysis" field MUST be a JSON array of strings. Every string MUST start with
"• [+] ", "• [~] " or "• [-] " (bullet, space, sentiment tag in brackets, space)
followed by fewer than {max_words} words. Use [+] for strengths, [~] for neutral
observations and [-] for weaknesses. No other line formats are allowed."""

INVESTMENT_TEMPLATE = """As an expert financial analyst, you are analyzing an investment for a client.

You will be given the user's profile and the investment details. Use this information as follows:

1. **Grade**: Determine the investment 'grade' (one of A, B, C, D, F) by comparing the investment to the user's profile (their experience, risk tolerance, and interests). A grade of 'A' means it's a perfect match for them, while a grade of 'F' means it's a very poor fit.
2. **Risk, ROI, and Explanation**: The rest of your analysis (riskScore, roiEstimate, explanation) should be based *only* on the investment's own characteristics, disregarding the user's profile.
3. **Explanation Tone**: In your explanation, address the user directly.

User Profile:
{profile}

Investment Details:
- Type: {type}
- Name: {name}
- Amount: ${amount}
- Holding Time: {duration}
- Start Date: {date}

Please provide the following in a single JSON object:
- "grade": The letter grade based on the match with the user's profile.
- "riskScore": A numerical risk score from 1 (very low risk) to 10 (very high risk). Bonds, Real Estate, and Commodities should generally receive lower risk scores than equities; well-established, large-cap companies should score lower than new startups or highly volatile assets.
- "riskExplanation": A brief, one-sentence explanation for the assigned risk score.
- "roiScenarios": A JSON object with three ROI estimates in percent: "pessimistic", "realistic", and "optimistic".
- "roiEstimate": The average of the three ROI scenarios.
- "explanation": A detailed, multi-sentence explanation of your overall analysis, addressed to the user.
"""

PORTFOLIO_TEMPLATE = """As a hyper-personalized AI financial advisor, your primary role is to evaluate a client's investment portfolio strictly through the lens of their unique personal and financial profile. General market wisdom is secondary to the user's stated goals.

**Crucial User Profile Data:**
{profile}

**User's Current Portfolio ({count} investments):**
{holdings}

**Your Task:**
Provide a single, structured JSON object with the following keys. Your entire analysis MUST be tailored to the user's profile.

1. **"grade"**: A single letter grade using a granular scale (A+, A, A-, B+, B, B-, C+, ...). It must exclusively reflect how well the current portfolio aligns with the user's Primary Investment Goal and Risk Appetite.
2. **"riskScore"**: The portfolio's overall risk from 1 (very low) to 10 (very high).
3. **"roiEstimate"**: The expected annual ROI in percent.
4. **"analysis"**: {analysis_instructions}
5. **"recommendations"**: An array of exactly 3 new, specific investment recommendations, each with a "name" and a "reason" (3-5 words) that connects it to the user's Primary Investment Goal or Stated Interests.

The entire response must be a single JSON object. Do not include any text outside of the JSON.
"""

PROSE_ANALYSIS = (
    "A comprehensive analysis written directly to the user explaining why you gave the grade, "
    "pointing out strengths and weaknesses in the context of their objectives."
)

BULLET_ANALYSIS = (
    'A JSON array of short bullet strings. Each string must have the form "• [+] text", '
    '"• [~] text" or "• [-] text" where + marks a strength, ~ a neutral point and - a weakness, '
    "and the text must be fewer than {max_words} words. Example: "
    '["• [+] Strong alignment with growth goal", "• [-] Heavy single-sector concentration"]'
)

SCENARIO_VALIDATION_TEMPLATE = """Is this a valid financial/market scenario for portfolio stress testing? Answer only "yes" or "no".

Scenario: {scenario}

Valid scenarios include: market crashes, interest rate changes, inflation, geopolitical events, sector-specific events, economic recessions, currency fluctuations, commodity price changes, regulatory changes, etc.

Invalid scenarios include: personal opinions, non-financial topics, inappropriate content, etc.

Answer:"""

STRESS_TEST_TEMPLATE = """You are a world-class financial analyst specializing in stress testing portfolios under specific market scenarios.

**User Profile:**
{profile}

**Current Portfolio:**
{portfolio}

**Stress Test Scenario:**
{scenario}

**Your Task:**
Analyze how this portfolio would perform under the given scenario and provide specific, actionable buy/sell recommendations.

**Response Format:**
Provide a single JSON object with the following structure:

{{
  "grade": "A/B/C/D/F",
  "riskScore": 7,
  "roiEstimate": 5.2,
  "roiScenarios": {{"pessimistic": 2.1, "realistic": 5.2, "optimistic": 8.7}},
  "analysis": "Detailed analysis of portfolio impact under this scenario",
  "recommendations": [
    {{"name": "SELL 30% of Tesla (TSLA) - $1,500", "reason": "Reduce tech exposure during market stress"}},
    {{"name": "BUY Vanguard Total Bond Market ETF (BND) - $2,000", "reason": "Add stability and income"}}
  ]
}}

**Requirements for recommendations:**
1. Every recommendation MUST start with "BUY" or "SELL".
2. Include exact ticker symbols in parentheses.
3. Specify exact dollar amounts.
4. Provide 3-5 specific actions; never vague advice such as "diversify" or "consider defensive stocks".

The entire response must be a single JSON object. Do not include any text outside of the JSON.
"""

REAL_ESTATE_TEMPLATE = """You are a real estate investment analyst. Analyze the following property and provide:
- A grade (A-F)
- A risk score (1-10)
- Estimated ROI scenarios (pessimistic, realistic, optimistic, in %)
- Estimated monthly cashflow (in EUR)
- Estimated monthly cashflow after mortgage is paid off (in EUR)
- Take into account inflation, all costs, and financing
- A detailed analysis text

Property data:
{property}

Respond in JSON with keys: grade, riskScore, roiScenarios (with pessimistic, realistic, optimistic), cashflow, cashflowAfterMortgage, explanation, riskExplanation."""

HOLDINGS_EXTRACTION_TEMPLATE = """Analyze this portfolio screenshot and return a JSON object with an 'investments' array. Each investment should have: name, type (Stock, ETF, Crypto, etc.), amount (current value), quantity (if visible) and purchaseDate (YYYY-MM-DD, if visible).

Example format:
{{"investments": [{{"name": "Apple Inc.", "type": "Stock", "amount": 1500.50, "purchaseDate": "2023-01-15"}}]}}

Only include data that is clearly visible in the image. Only return the JSON object with no additional text or markdown formatting."""

SCREENSHOT_ANALYSIS_TEMPLATE = """You are a senior financial analyst. Analyze the investment screenshot and the user's notes to identify ALL individual investments shown.

User Profile:
{profile}

Return a single, valid JSON array. Each element MUST be a JSON object with these exact fields and data types: "name" (string), "type" (string), "amount" (number, e.g., 126.50), "duration" (string, one of: {durations}), "grade" (string, one of: "A", "B", "C", "D", "F"), "riskScore" (integer from 1 to 10), "riskExplanation" (string), "roiEstimate" (number, e.g., 15.5), and "explanation" (string).

If there are multiple investments, each must be a separate object in the array. If there is only one, return an array with one object. Do not summarize or merge investments. Do NOT wrap it in markdown.

The user's notes are: "{notes}"."""


def _show(value: Any) -> str:
    if value is None:
        return MISSING
    if isinstance(value, str):
        return value.strip() or MISSING
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item) for item in value) or MISSING
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


def render_profile(profile: UserProfile) -> str:
    lines = [
        f"- Experience Level: {_show(profile.experience)}",
        f"- Risk Tolerance: {_show(profile.risk_tolerance)}",
        f"- Interests: {_show(profile.interests)}",
        f"- Primary Investment Goal: {_show(profile.primary_goal)}",
    ]
    if profile.goals:
        lines.append(f"- Other Goals: {_show(profile.goals)}")
    return "\n".join(lines)


def render_holdings(investments: Sequence[InvestmentData]) -> str:
    return "\n".join(f"- {inv.name} (${_show(inv.amount)}, Type: {_show(inv.type)})" for inv in investments)


def render_property(data: PropertyData) -> str:
    labels = {
        "country": "Country",
        "city": "City",
        "street": "Street",
        "object_type": "Object Type",
        "sqm": "Size (m²)",
        "year_of_construction": "Year of Construction",
        "last_renovation": "Last Renovation",
        "net_rent": "Net Rent",
        "apportionable_costs": "Apportionable Additional Costs",
        "non_apportionable_costs": "Non-Apportionable Additional Costs",
        "vacancy": "Vacancy (Months per Year)",
        "purchase_price": "Purchase Price",
        "market_price": "Market Price",
        "residual_debt": "Residual Debt",
        "interest": "Interest",
        "repayment_rate": "Repayment Rate (monthly)",
        "interest_fixation": "Interest Rate Fixation (months)",
    }
    return "\n".join(f"{label}: {_show(getattr(data, attr))}" for attr, label in labels.items())


def bullet_system_prompt(max_words: int = 10) -> str:
    return BULLET_SYSTEM_PROMPT.format(max_words=max_words)


def correction_note(attempt: int, max_words: int = 10) -> str:
    """Stricter reminder appended when a previous attempt broke the bullet format."""
    return (
        f"Attempt {attempt}: your previous answer did not follow the required format. "
        f'Every "analysis" entry must start with "• [+] ", "• [~] " or "• [-] " and contain '
        f"fewer than {max_words} words after the tag. Return only the JSON object."
    )


def _expect(subject: Any, kind: type | tuple[type, ...], mode: str) -> None:
    if not isinstance(subject, kind):
        raise TypeError(f"Prompt mode '{mode}' cannot render subject of type {type(subject).__name__}")


def build_prompt(
    subject: Any,
    profile: UserProfile | None,
    mode: str,
    *,
    investments: Sequence[InvestmentData] = (),
    notes: str | None = None,
    max_words: int = 10,
) -> str:
    """
    Assemble the user prompt for ``mode``.

    ``subject`` is an ``InvestmentData`` (investment), a list of them
    (portfolio, portfolio_bullets), a scenario string (stress_test,
    scenario_validation), ``PropertyData`` (real_estate), or unused for the
    image modes.
    """
    profile = profile or UserProfile()

    if mode == "investment":
        _expect(subject, InvestmentData, mode)
        return INVESTMENT_TEMPLATE.format(
            profile=render_profile(profile),
            type=_show(subject.type),
            name=_show(subject.name),
            amount=_show(subject.amount),
            duration=_show(subject.duration),
            date=_show(subject.date),
        )

    if mode in ("portfolio", "portfolio_bullets"):
        _expect(subject, (list, tuple), mode)
        instructions = PROSE_ANALYSIS if mode == "portfolio" else BULLET_ANALYSIS.format(max_words=max_words)
        return PORTFOLIO_TEMPLATE.format(
            profile=render_profile(profile),
            count=len(subject),
            holdings=render_holdings(subject),
            analysis_instructions=instructions,
        )

    if mode == "scenario_validation":
        _expect(subject, str, mode)
        return SCENARIO_VALIDATION_TEMPLATE.format(scenario=subject.strip())

    if mode == "stress_test":
        _expect(subject, str, mode)
        portfolio = [inv.to_payload() for inv in investments]
        return STRESS_TEST_TEMPLATE.format(
            profile=fence_json(profile.to_payload()),
            portfolio=fence_json(portfolio),
            scenario=subject.strip(),
        )

    if mode == "real_estate":
        _expect(subject, PropertyData, mode)
        return REAL_ESTATE_TEMPLATE.format(property=render_property(subject))

    if mode == "holdings_extraction":
        return HOLDINGS_EXTRACTION_TEMPLATE.format()

    if mode == "screenshot_analysis":
        return SCREENSHOT_ANALYSIS_TEMPLATE.format(
            profile=render_profile(profile),
            durations=", ".join(f'"{d}"' for d in DURATIONS),
            notes=(notes or "").strip() or "None",
        )

    raise ValueError(f"Unknown prompt mode: {mode}")

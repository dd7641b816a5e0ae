"""
Analysis pipelines: prompt -> model call -> JSON extraction -> sanitization.

Each function serves one HTTP endpoint and is request-scoped; the only
shared resource is the injected ``LLMClient``.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Sequence

from flowinvest.exceptions import ExtractionError, FlowInvestError, RequestError, UpstreamError, ValidationExhausted
from flowinvest.schemas.analysis import (
    ExtractedHolding,
    InvestmentAnalysis,
    PortfolioAnalysis,
    RealEstateAnalysis,
    RoiScenarios,
    ScenarioNote,
    StressTestResult,
)
from flowinvest.schemas.requests import AnalysisRequest, InvestmentData, PropertyData, UserProfile
from flowinvest.services.extraction import extract_json
from flowinvest.services.llm_client import LLMClient, Message
from flowinvest.services.prompts import SYSTEM_PROMPTS, build_prompt
from flowinvest.services.retry_loop import ConstrainedRetryLoop, RetryPolicy
from flowinvest.services.sanitizer import (
    DEFAULTS,
    GradeScale,
    SanitizerDefaults,
    coerce_duration,
    coerce_text,
    coerce_text_or_lines,
    parse_number,
    sanitize,
    sanitize_investment,
    sanitize_real_estate,
)
from flowinvest.services.uploads import UploadedImage

logger = logging.getLogger(__name__)

REJECTED_SCENARIO = "Please enter a different scenario."
UNPARSED_SCREENSHOT = "Analysis completed but could not parse the response."
EXTRACTED_DURATION = "Long-term (5+ years)"


def _messages(mode: str, user_content: str | list[dict[str, Any]]) -> list[Message]:
    return [
        {"role": "system", "content": SYSTEM_PROMPTS[mode]},
        {"role": "user", "content": user_content},
    ]


async def _complete_json(client: LLMClient, messages: list[Message], **kwargs: Any) -> Any:
    raw = await client.complete(messages, **kwargs)
    return extract_json(raw)


def _require_object(parsed: Any, raw_hint: str = "") -> dict[str, Any]:
    if not isinstance(parsed, dict):
        raise ExtractionError("AI response was not a JSON object", raw_text=raw_hint or repr(parsed))
    return parsed


async def analyze_investment(client: LLMClient, request: AnalysisRequest) -> InvestmentAnalysis:
    """Grade one investment against the user's profile."""
    subject = request.subject
    if not isinstance(subject, InvestmentData):
        raise RequestError("Missing required data", "investmentData must describe a single investment")

    prompt = build_prompt(subject, request.profile, "investment")
    parsed = _require_object(
        await _complete_json(client, _messages("investment", prompt), temperature=0.7, max_tokens=1000, json_mode=True)
    )
    # Model output wins, but the investment's own fields fill anything it omits.
    merged = {**subject.to_payload(), **parsed}
    return sanitize_investment(merged, GradeScale.STRICT)


def fallback_analysis(investment: InvestmentData, defaults: SanitizerDefaults = DEFAULTS) -> InvestmentAnalysis:
    """Placeholder result used when an investment could not be analyzed at all."""
    return InvestmentAnalysis(
        name=investment.name,
        type=investment.type,
        amount=investment.amount,
        duration=coerce_duration(investment.duration, defaults),
        date=investment.date,
        grade=defaults.failed_grade,
        risk_score=defaults.risk_score,
        roi_estimate=0.0,
        roi_scenarios=RoiScenarios(),
        explanation=defaults.failed_explanation,
        risk_explanation=defaults.failed_risk_explanation,
    )


async def analyze_investments(
    client: LLMClient,
    investments: Sequence[InvestmentData],
    profile: UserProfile,
    concurrency: int = 4,
) -> list[InvestmentAnalysis]:
    """
    Analyze every investment independently, at most ``concurrency`` at a time.

    Results mirror the input order. A failed item is replaced by
    ``fallback_analysis`` instead of failing the whole batch.
    """
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def _one(index: int, investment: InvestmentData) -> InvestmentAnalysis:
        async with semaphore:
            try:
                return await analyze_investment(client, AnalysisRequest(subject=investment, profile=profile))
            except FlowInvestError as exc:
                logger.warning("Investment %s (%s) could not be analyzed: %s", index, investment.name, exc)
                return fallback_analysis(investment)

    return list(await asyncio.gather(*(_one(i, inv) for i, inv in enumerate(investments))))


async def analyze_portfolio(
    client: LLMClient,
    investments: Sequence[InvestmentData],
    profile: UserProfile,
    policy: RetryPolicy | None = None,
) -> PortfolioAnalysis:
    """Grade the whole portfolio with a sentiment-tagged bullet analysis."""
    policy = policy or RetryPolicy()
    prompt = build_prompt(list(investments), profile, "portfolio_bullets", max_words=policy.max_words)

    try:
        outcome = await ConstrainedRetryLoop(client, policy).obtain(prompt)
    except ValidationExhausted as exc:
        if isinstance(exc.cause, UpstreamError):
            raise exc.cause from exc
        raise

    return _portfolio_result(dict(outcome.structured or {}), validated=outcome.validated, attempts=outcome.attempt)


async def analyze_portfolio_prose(
    client: LLMClient,
    investments: Sequence[InvestmentData],
    profile: UserProfile,
) -> PortfolioAnalysis:
    """Grade the portfolio in one call with a free-text analysis instead of bullets."""
    prompt = build_prompt(list(investments), profile, "portfolio")
    parsed = _require_object(
        await _complete_json(client, _messages("portfolio", prompt), temperature=0.7, max_tokens=1500, json_mode=True)
    )
    return _portfolio_result(parsed, validated=False, attempts=1)


def _portfolio_result(raw: dict[str, Any], *, validated: bool, attempts: int) -> PortfolioAnalysis:
    analysis = coerce_text_or_lines(raw.get("analysis"), DEFAULTS.analysis)
    raw.setdefault("explanation", raw.get("analysis"))
    base = sanitize(raw, GradeScale.MODIFIED)
    return PortfolioAnalysis(**base.model_dump(), analysis=analysis, validated=validated, attempts=attempts)


async def is_valid_scenario(client: LLMClient, scenario: str) -> bool:
    prompt = build_prompt(scenario, None, "scenario_validation")
    answer = await client.complete(_messages("scenario_validation", prompt), temperature=0.1, max_tokens=10)
    logger.info("Scenario validation answer: %r", answer.strip())
    return "yes" in answer.lower()


async def stress_test(
    client: LLMClient,
    scenario: str,
    investments: Sequence[InvestmentData],
    profile: UserProfile,
) -> StressTestResult | ScenarioNote:
    """Assess the portfolio under a market scenario, rejecting non-financial scenarios."""
    if not await is_valid_scenario(client, scenario):
        return ScenarioNote(analysis=REJECTED_SCENARIO)

    prompt = build_prompt(scenario, profile, "stress_test", investments=investments)
    raw = await client.complete(_messages("stress_test", prompt), temperature=0.7, max_tokens=1500, json_mode=True)
    try:
        parsed = extract_json(raw)
    except ExtractionError:
        return ScenarioNote(analysis=raw.strip())
    if not isinstance(parsed, dict):
        return ScenarioNote(analysis=raw.strip())

    analysis = coerce_text_or_lines(parsed.get("analysis"), DEFAULTS.analysis)
    parsed.setdefault("explanation", parsed.get("analysis"))
    base = sanitize(parsed, GradeScale.STRICT)
    return StressTestResult(**base.model_dump(), analysis=analysis)


async def analyze_real_estate(client: LLMClient, data: PropertyData) -> RealEstateAnalysis:
    prompt = build_prompt(data, None, "real_estate")
    parsed = _require_object(
        await _complete_json(client, _messages("real_estate", prompt), temperature=0.2, max_tokens=800, json_mode=True)
    )
    return sanitize_real_estate(parsed)


def _holding_items(parsed: Any) -> list[Mapping[str, Any]]:
    if isinstance(parsed, dict) and isinstance(parsed.get("investments"), list):
        items: Iterable[Any] = parsed["investments"]
    elif isinstance(parsed, list):
        items = parsed
    elif isinstance(parsed, dict):
        # {"Apple": {"amount": 10}} or {"Apple": 10}
        items = [
            {"name": key, **value} if isinstance(value, dict) else {"name": key, "amount": value}
            for key, value in parsed.items()
        ]
    else:
        items = []
    return [item for item in items if isinstance(item, Mapping)]


def clean_holdings(parsed: Any) -> list[ExtractedHolding]:
    """Normalize extracted holdings, dropping unnamed or non-positive entries."""
    today = datetime.now(timezone.utc).date().isoformat()
    holdings = []
    for item in _holding_items(parsed):
        amount = parse_number(item.get("amount") or item.get("currentValue"), 0.0)
        name = coerce_text(item.get("name"), "")
        if not name or amount <= 0:
            logger.debug("Dropping extracted holding %r", item)
            continue
        date = item.get("purchaseDate") or item.get("date")
        holdings.append(
            ExtractedHolding(
                name=name,
                type=coerce_text(item.get("type"), "Stock"),
                amount=amount,
                date=date if isinstance(date, str) and date.strip() else today,
                duration=EXTRACTED_DURATION,
            )
        )
    return holdings


async def extract_holdings(client: LLMClient, upload: UploadedImage) -> list[ExtractedHolding]:
    """Read the holdings visible in one portfolio screenshot."""
    content = [{"type": "text", "text": build_prompt(None, None, "holdings_extraction")}, upload.image_part()]
    parsed = await _complete_json(
        client, _messages("holdings_extraction", content), temperature=0.3, max_tokens=2000, json_mode=True
    )
    holdings = clean_holdings(parsed)
    logger.info("Extracted %s holdings from %s", len(holdings), upload.filename or "upload")
    return holdings


async def extract_holdings_batch(
    client: LLMClient,
    uploads: Sequence[UploadedImage],
    concurrency: int = 4,
) -> list[ExtractedHolding]:
    """Extract holdings from several screenshots; files that fail are skipped."""
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def _one(upload: UploadedImage) -> list[ExtractedHolding]:
        async with semaphore:
            try:
                return await extract_holdings(client, upload)
            except FlowInvestError as exc:
                logger.warning("Skipping %s: %s", upload.filename or "upload", exc)
                return []

    results = await asyncio.gather(*(_one(upload) for upload in uploads))
    holdings = [holding for batch in results for holding in batch]
    if not holdings:
        raise RequestError("No valid investments found", "No valid investments found in any of the uploaded images")
    return holdings


async def analyze_screenshot(
    client: LLMClient,
    upload: UploadedImage,
    profile: UserProfile,
    notes: str | None = None,
) -> list[InvestmentAnalysis]:
    """Identify and grade every investment visible in a screenshot."""
    prompt = build_prompt(None, profile, "screenshot_analysis", notes=notes)
    content = [{"type": "text", "text": prompt}, upload.image_part()]
    raw = await client.complete(_messages("screenshot_analysis", content), temperature=0.7, max_tokens=1000)

    try:
        parsed = extract_json(raw)
    except ExtractionError:
        explanation = raw if "```" in raw else UNPARSED_SCREENSHOT
        parsed = {"explanation": explanation}

    items = parsed if isinstance(parsed, list) else [parsed]
    analyzed_at = datetime.now(timezone.utc)
    return [
        sanitize_investment(item, GradeScale.STRICT).model_copy(
            update={"source": "screenshot", "analysis_date": analyzed_at}
        )
        for item in items
    ]

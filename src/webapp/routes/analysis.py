from __future__ import annotations

import logging
from datetime import datetime, timezone

from flask import Blueprint, jsonify, request

from flowinvest.exceptions import RequestError
from flowinvest.schemas.requests import AnalysisRequest, InvestmentData, PropertyData
from flowinvest.services import analysis
from flowinvest.services.retry_loop import RetryPolicy
from flowinvest.services.uploads import read_upload
from webapp.utils import (
    json_body,
    llm_client,
    parse_investments,
    parse_model,
    parse_profile,
    payloads,
    settings,
)

logger = logging.getLogger(__name__)

bp = Blueprint("analysis", __name__, url_prefix="/api")


@bp.post("/investment")
async def analyze_investment():
    """Grade a single investment for the user."""
    body = json_body()
    if not body.get("investmentData") or not body.get("userProfile"):
        raise RequestError("Missing required data", "investmentData and userProfile are required")

    investment = parse_model(InvestmentData, body["investmentData"], "investmentData")
    profile = parse_profile(body["userProfile"])
    logger.info("Analyzing investment %s", investment.name)

    result = await analysis.analyze_investment(
        llm_client(), AnalysisRequest(subject=investment, profile=profile)
    )
    return jsonify(result.to_payload())


@bp.post("/analyze-investments")
async def analyze_investments():
    """Grade every investment in the list; failed items get a default analysis."""
    body = json_body()
    investments = parse_investments(body.get("investments"))
    profile = parse_profile(body.get("userProfile"), required=False)
    logger.info("Analyzing %s investments", len(investments))

    results = await analysis.analyze_investments(
        llm_client(), investments, profile, concurrency=settings().ITEM_CONCURRENCY
    )
    return jsonify({"data": payloads(results)})


@bp.post("/portfolio")
async def analyze_portfolio():
    """
    Grade the whole portfolio.

    The analysis is a sentiment-tagged bullet list unless the body sets
    ``analysisFormat`` to ``"prose"``.
    """
    body = json_body()
    if not body.get("investments") or not body.get("userProfile"):
        raise RequestError("Missing or empty portfolio or missing profile data")

    investments = parse_investments(body["investments"])
    profile = parse_profile(body["userProfile"])
    if body.get("analysisFormat") == "prose":
        result = await analysis.analyze_portfolio_prose(llm_client(), investments, profile)
        return jsonify(result.to_payload())

    result = await analysis.analyze_portfolio(
        llm_client(), investments, profile, RetryPolicy.from_settings(settings())
    )
    return jsonify(result.to_payload())


@bp.post("/stress-test")
async def stress_test():
    body = json_body()
    scenario = body.get("scenario")
    if not isinstance(scenario, str) or not scenario.strip() or not body.get("investments") or not body.get("userProfile"):
        raise RequestError("Missing required fields: scenario, investments, or userProfile")

    investments = parse_investments(body["investments"])
    profile = parse_profile(body["userProfile"])
    logger.info("Stress testing %s investments under scenario %r", len(investments), scenario)

    result = await analysis.stress_test(llm_client(), scenario, investments, profile)
    return jsonify(result.to_payload())


@bp.post("/analyze-real-estate")
async def analyze_real_estate():
    data = parse_model(PropertyData, json_body(), "property data")
    result = await analysis.analyze_real_estate(llm_client(), data)
    return jsonify(result.to_payload())


@bp.post("/analyze-portfolio")
async def extract_portfolio():
    """Extract the holdings shown in one portfolio screenshot."""
    upload = read_upload(request.files.get("screenshot"), settings().MAX_UPLOAD_BYTES)
    holdings = await analysis.extract_holdings(llm_client(), upload)
    if not holdings:
        raise RequestError("No valid investments found", "Could not extract any valid investments from the image")

    return jsonify(
        {
            "success": True,
            "data": payloads(holdings),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )


@bp.post("/batch-screenshot")
async def extract_portfolio_batch():
    """Extract holdings from several screenshots sent under the ``screenshots`` key."""
    files = request.files.getlist("screenshots")
    if not files:
        raise RequestError("No files uploaded", 'Please ensure you are sending files with the key "screenshots"')

    limit = settings().MAX_UPLOAD_BYTES
    uploads = [read_upload(file, limit) for file in files]
    holdings = await analysis.extract_holdings_batch(
        llm_client(), uploads, concurrency=settings().ITEM_CONCURRENCY
    )
    return jsonify({"data": payloads(holdings)})


@bp.post("/screenshot")
async def analyze_screenshot():
    """Identify and grade each investment visible in a screenshot."""
    upload = read_upload(request.files.get("screenshot"), settings().MAX_UPLOAD_BYTES)
    profile = parse_profile(request.form.get("userProfile"), required=False)
    notes = request.form.get("additionalNotes", "")

    results = await analysis.analyze_screenshot(llm_client(), upload, profile, notes)
    return jsonify(payloads(results))

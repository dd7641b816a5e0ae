from __future__ import annotations

import json

import pytest

from flowinvest.exceptions import ExtractionError, RequestError, UpstreamError
from flowinvest.schemas.analysis import ScenarioNote, StressTestResult
from flowinvest.schemas.requests import AnalysisRequest, InvestmentData, PropertyData, UserProfile
from flowinvest.services import analysis
from flowinvest.services.retry_loop import RetryPolicy
from flowinvest.services.uploads import UploadedImage


def _upload(name: str = "portfolio.png") -> UploadedImage:
    return UploadedImage(data=b"\x89PNG fake", mime_type="image/png", filename=name)


def _user_text(messages) -> str:
    content = messages[-1]["content"]
    if isinstance(content, str):
        return content
    return " ".join(part.get("text", "") for part in content if part.get("type") == "text")


@pytest.mark.asyncio
async def test_analyze_investment_merges_subject_and_model_output(scripted_client):
    client = scripted_client('```json\n{"grade": "A", "riskScore": "low", "roiEstimate": "7%"}\n```')
    investment = InvestmentData(name="Vanguard Total Bond", type="ETF", amount=2500, duration="Mid-term (1-5 years)")

    result = await analysis.analyze_investment(client, AnalysisRequest(subject=investment, profile=UserProfile()))

    assert result.name == "Vanguard Total Bond"
    assert result.type == "ETF"
    assert result.amount == 2500.0
    assert result.duration == "Mid-term (1-5 years)"
    assert result.grade == "A"
    assert result.risk_score == 3
    assert result.roi_estimate == 7.0
    assert client.calls[0]["json_mode"] is True


@pytest.mark.asyncio
async def test_analyze_investment_rejects_non_object(scripted_client):
    client = scripted_client("[1, 2]")

    with pytest.raises(ExtractionError):
        await analysis.analyze_investment(client, AnalysisRequest(subject=InvestmentData(name="X")))


@pytest.mark.asyncio
async def test_analyze_investments_preserves_order_and_isolates_failures(scripted_client):
    def _respond(messages):
        prompt = _user_text(messages)
        if "Name: Broken" in prompt:
            return "the model rambled without any JSON"
        grade = "A" if "Name: First" in prompt else "C"
        return json.dumps({"grade": grade, "riskScore": 4})

    client = scripted_client(_respond)
    investments = [InvestmentData(name="First"), InvestmentData(name="Broken", amount=99), InvestmentData(name="Third")]

    results = await analysis.analyze_investments(client, investments, UserProfile(), concurrency=2)

    assert [item.name for item in results] == ["First", "Broken", "Third"]
    assert [item.grade for item in results] == ["A", "B", "C"]
    assert results[1].explanation == "Analysis could not be completed for this investment."
    assert results[1].amount == 99.0
    assert len(client.calls) == 3


@pytest.mark.asyncio
async def test_analyze_portfolio_returns_sorted_bullets(scripted_client):
    client = scripted_client(
        json.dumps(
            {
                "grade": "b+",
                "riskScore": 6,
                "roiEstimate": 8,
                "analysis": ["• [-] Heavy tech concentration", "• [+] Matches growth goal"],
                "recommendations": [{"name": "BND", "reason": "Adds stability"}],
            }
        )
    )

    result = await analysis.analyze_portfolio(client, [InvestmentData(name="QQQ", amount=5000)], UserProfile())

    assert result.validated
    assert result.attempts == 1
    assert result.grade == "B+"
    assert result.analysis == ["• [+] Matches growth goal", "• [-] Heavy tech concentration"]
    assert result.explanation == result.analysis
    assert result.recommendations[0].name == "BND"


@pytest.mark.asyncio
async def test_analyze_portfolio_falls_back_after_exhaustion(scripted_client):
    client = scripted_client(json.dumps({"grade": "C", "analysis": "Long prose paragraph about the portfolio."}))

    result = await analysis.analyze_portfolio(
        client, [InvestmentData(name="QQQ")], UserProfile(), RetryPolicy(max_attempts=2)
    )

    assert not result.validated
    assert result.attempts == 2
    assert result.analysis == "Long prose paragraph about the portfolio."
    assert len(client.calls) == 2


@pytest.mark.asyncio
async def test_analyze_portfolio_surfaces_upstream_error(scripted_client):
    client = scripted_client(UpstreamError("rate_limit"))

    with pytest.raises(UpstreamError) as exc_info:
        await analysis.analyze_portfolio(client, [InvestmentData(name="QQQ")], UserProfile(), RetryPolicy(max_attempts=2))

    assert exc_info.value.status_code == 429


@pytest.mark.asyncio
async def test_stress_test_rejects_non_financial_scenario(scripted_client):
    client = scripted_client("No.")

    result = await analysis.stress_test(client, "My cat is sad", [InvestmentData(name="SPY")], UserProfile())

    assert isinstance(result, ScenarioNote)
    assert result.analysis == analysis.REJECTED_SCENARIO
    assert len(client.calls) == 1


@pytest.mark.asyncio
async def test_stress_test_returns_structured_result(scripted_client):
    client = scripted_client(
        "Yes",
        json.dumps(
            {
                "grade": "C",
                "riskScore": 8,
                "roiScenarios": {"pessimistic": -12, "realistic": -4, "optimistic": 2},
                "analysis": "Equities fall sharply.",
                "recommendations": [{"name": "BUY Vanguard Total Bond Market ETF (BND) - $2,000", "reason": "Stability"}],
            }
        ),
    )

    result = await analysis.stress_test(client, "Market crash", [InvestmentData(name="SPY")], UserProfile())

    assert isinstance(result, StressTestResult)
    assert result.roi_estimate == -4.0
    assert result.explanation == "Equities fall sharply."
    assert result.recommendations[0].name.startswith("BUY")


@pytest.mark.asyncio
async def test_stress_test_returns_plain_text_when_unparseable(scripted_client):
    client = scripted_client("yes", "  Bonds would hold up; equities would not.  ")

    result = await analysis.stress_test(client, "Rates rise", [InvestmentData(name="SPY")], UserProfile())

    assert isinstance(result, ScenarioNote)
    assert result.analysis == "Bonds would hold up; equities would not."


@pytest.mark.asyncio
async def test_analyze_real_estate(scripted_client):
    client = scripted_client(json.dumps({"grade": "B", "riskScore": 4, "cashflow": "320 EUR", "explanation": "Solid."}))

    result = await analysis.analyze_real_estate(client, PropertyData(city="Leipzig", purchase_price=250000))

    assert result.grade == "B"
    assert result.cashflow == 320.0
    assert result.cashflow_after_mortgage == 0.0
    assert "Purchase Price: 250000" in _user_text(client.calls[0]["messages"])


def test_clean_holdings_drops_invalid_entries():
    holdings = analysis.clean_holdings(
        {
            "investments": [
                {"name": "Apple Inc.", "type": "Stock", "amount": "$1,500.50", "purchaseDate": "2023-01-15"},
                {"name": "", "amount": 100},
                {"name": "Zero", "amount": 0},
                {"name": "Bitcoin", "amount": 300},
                "junk",
            ]
        }
    )

    assert [holding.name for holding in holdings] == ["Apple Inc.", "Bitcoin"]
    assert holdings[0].amount == 1500.5
    assert holdings[0].date == "2023-01-15"
    assert holdings[1].type == "Stock"
    assert holdings[1].duration == analysis.EXTRACTED_DURATION


def test_clean_holdings_accepts_name_keyed_objects():
    holdings = analysis.clean_holdings({"Tesla": {"type": "Stock", "amount": 900}, "Gold": 250})

    assert [(holding.name, holding.amount) for holding in holdings] == [("Tesla", 900.0), ("Gold", 250.0)]


@pytest.mark.asyncio
async def test_extract_holdings_sends_image(scripted_client):
    client = scripted_client('{"investments": [{"name": "MSFT", "amount": 1200}]}')

    holdings = await analysis.extract_holdings(client, _upload())

    content = client.calls[0]["messages"][-1]["content"]
    assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
    assert holdings[0].name == "MSFT"


@pytest.mark.asyncio
async def test_extract_holdings_batch_skips_failed_files(scripted_client):
    client = scripted_client("not json", '[{"name": "VOO", "amount": 800}]')

    holdings = await analysis.extract_holdings_batch(client, [_upload("a.png"), _upload("b.png")])

    assert [holding.name for holding in holdings] == ["VOO"]


@pytest.mark.asyncio
async def test_extract_holdings_batch_raises_when_nothing_found(scripted_client):
    client = scripted_client("not json")

    with pytest.raises(RequestError):
        await analysis.extract_holdings_batch(client, [_upload()])


@pytest.mark.asyncio
async def test_analyze_screenshot_tags_every_item(scripted_client):
    client = scripted_client(
        json.dumps(
            [
                {"name": "AAPL", "type": "Stock", "amount": 126.5, "grade": "B", "riskScore": 5},
                {"name": "ETH", "type": "Crypto", "amount": 50, "grade": "D", "riskScore": 9},
            ]
        )
    )

    results = await analysis.analyze_screenshot(client, _upload(), UserProfile(), notes="long-term")

    assert [item.name for item in results] == ["AAPL", "ETH"]
    assert all(item.source == "screenshot" for item in results)
    assert all(item.analysis_date is not None for item in results)


@pytest.mark.asyncio
async def test_analyze_screenshot_placeholder_on_unparseable_output(scripted_client):
    client = scripted_client("I could not read that image.")

    results = await analysis.analyze_screenshot(client, _upload(), UserProfile())

    assert len(results) == 1
    assert results[0].name == "Investment from Screenshot"
    assert results[0].explanation == analysis.UNPARSED_SCREENSHOT


@pytest.mark.asyncio
async def test_analyze_portfolio_prose_uses_single_call(scripted_client):
    client = scripted_client(
        json.dumps({"grade": "A-", "riskScore": 4, "analysis": "Your portfolio matches your growth goal."})
    )

    result = await analysis.analyze_portfolio_prose(client, [InvestmentData(name="VTI", amount=900)], UserProfile())

    assert len(client.calls) == 1
    assert client.calls[0]["messages"][0]["content"] == analysis.SYSTEM_PROMPTS["portfolio"]
    assert "• [+]" not in _user_text(client.calls[0]["messages"])
    assert result.grade == "A-"
    assert result.analysis == "Your portfolio matches your growth goal."
    assert result.explanation == result.analysis
    assert not result.validated
    assert result.attempts == 1

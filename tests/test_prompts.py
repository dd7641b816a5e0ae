from __future__ import annotations

import pytest

from flowinvest.schemas.requests import InvestmentData, PropertyData, UserProfile
from flowinvest.services.prompts import MISSING, build_prompt, correction_note


def _profile() -> UserProfile:
    return UserProfile.model_validate(
        {
            "experience": "Intermediate",
            "riskTolerance": "High",
            "interests": ["Tech", "Energy"],
            "primaryGoal": "Retirement",
        }
    )


def test_investment_prompt_embeds_profile_and_details():
    investment = InvestmentData(name="Apple", type="Stock", amount="$1,500", duration="Long-term (5+ years)")

    prompt = build_prompt(investment, _profile(), "investment")

    assert "- Experience Level: Intermediate" in prompt
    assert "- Interests: Tech, Energy" in prompt
    assert "- Name: Apple" in prompt
    assert "- Amount: $1500" in prompt
    assert f"- Start Date: {MISSING}" in prompt
    assert '"grade"' in prompt


def test_missing_profile_fields_render_placeholder():
    prompt = build_prompt(InvestmentData(name="Bond"), None, "investment")

    assert f"- Risk Tolerance: {MISSING}" in prompt
    assert f"- Interests: {MISSING}" in prompt
    assert "None" not in prompt


def test_portfolio_modes_differ_in_analysis_instructions():
    holdings = [InvestmentData(name="VTI", type="ETF", amount=1000), InvestmentData(name="BTC", type="Crypto", amount=250)]

    prose = build_prompt(holdings, _profile(), "portfolio")
    bullets = build_prompt(holdings, _profile(), "portfolio_bullets", max_words=7)

    assert "(2 investments)" in prose
    assert "- VTI ($1000, Type: ETF)" in prose
    assert "• [+]" not in prose
    assert "• [+] text" in bullets
    assert "fewer than 7 words" in bullets


def test_stress_test_prompt_embeds_fenced_json():
    holdings = [InvestmentData(name="TSLA", type="Stock", amount=5000)]

    prompt = build_prompt("  Market crash of 30%  ", _profile(), "stress_test", investments=holdings)

    assert "```json" in prompt
    assert '"name": "TSLA"' in prompt
    assert '"riskTolerance": "High"' in prompt
    assert "Market crash of 30%\n" in prompt


def test_scenario_validation_prompt():
    prompt = build_prompt("Interest rates rise 2%", None, "scenario_validation")

    assert "Scenario: Interest rates rise 2%" in prompt
    assert '"yes" or "no"' in prompt


def test_real_estate_prompt_lists_every_field():
    data = PropertyData.model_validate({"city": "Berlin", "sqm": 72.5, "netRent": 950})

    prompt = build_prompt(data, None, "real_estate")

    assert "City: Berlin" in prompt
    assert "Size (m²): 72.5" in prompt
    assert "Net Rent: 950" in prompt
    assert f"Purchase Price: {MISSING}" in prompt


def test_screenshot_prompt_includes_notes_and_durations():
    prompt = build_prompt(None, _profile(), "screenshot_analysis", notes="  bought in 2021 ")

    assert 'The user\'s notes are: "bought in 2021"' in prompt
    assert '"Mid-term (1-5 years)"' in prompt


def test_holdings_extraction_prompt_is_static():
    assert "'investments' array" in build_prompt(None, None, "holdings_extraction")


def test_wrong_subject_type_is_rejected():
    with pytest.raises(TypeError):
        build_prompt("not an investment", None, "investment")


def test_unknown_mode_is_rejected():
    with pytest.raises(ValueError):
        build_prompt(None, None, "horoscope")


def test_correction_note_mentions_attempt_and_limit():
    note = correction_note(3, max_words=6)

    assert note.startswith("Attempt 3")
    assert "fewer than 6 words" in note

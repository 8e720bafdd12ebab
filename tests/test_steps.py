from __future__ import annotations

import json
import math

import pytest

from conftest import ScriptedGateway
from storycraft.pipeline.steps import (
    AUTO_ACCEPT_THRESHOLD,
    ai_edit_content,
    analyze_use_cases,
    apply_ai_edit,
    filter_content,
    generate_content,
    generate_story,
    normalize_score,
    validate_customer,
)
from storycraft.prompts import NO_CONTENT_MARKER
from storycraft.schemas.models import CustomerProfile, FilteredContent, StoryInput
from storycraft.tools.llm import LLMNetworkError


def _filtered(text: str = "They forecast demand in spreadsheets for 120 stores.") -> FilteredContent:
    return FilteredContent(use_case_name="Demand Forecasting", text=text)


@pytest.mark.parametrize(
    "raw,expected",
    [(0.8, 0.8), (0, 0.0), (1, 1.0), (1.5, 0.5), (-0.1, 0.5), ("0.9", 0.5), (None, 0.5), (True, 0.5), (math.nan, 0.5)],
)
def test_normalize_score(raw, expected):
    assert normalize_score(raw) == expected


def test_threshold_is_point_seven():
    assert AUTO_ACCEPT_THRESHOLD == 0.7


# -----------------------------------------------------------------------------
# customer validation


def test_validate_customer_parsed():
    gw = ScriptedGateway(
        json.dumps(
            {
                "companyName": "Acme Corp",
                "region": "United States",
                "industry": "Renewable Energy",
                "confidence": "HIGH",
                "additionalInfo": "Wind farm operator.",
                "suggestions": "",
            }
        )
    )
    outcome = validate_customer(gw, "Acme Corp, wind energy in Texas")
    assert not outcome.is_fallback
    assert outcome.value.company_name == "Acme Corp"
    assert outcome.value.confidence == "high"
    assert outcome.value.suggestions is None
    assert gw.calls[0]["temperature"] == 0.1
    assert gw.calls[0]["max_tokens"] == 800


def test_validate_customer_falls_back_to_text_mining():
    gw = ScriptedGateway("Company: Acme Corp\nRegion: US\nIndustry: Energy")
    outcome = validate_customer(gw, "acme")
    assert outcome.is_fallback
    profile = outcome.value
    assert (profile.company_name, profile.region, profile.industry) == ("Acme Corp", "US", "Energy")
    assert profile.confidence == "low"
    assert profile.additional_info.startswith("Company: Acme Corp")
    assert profile.suggestions == "Please provide more specific company information"


def test_validate_customer_incomplete_json_is_a_fallback():
    gw = ScriptedGateway('{"companyName": "Acme", "confidence": "high"}')
    outcome = validate_customer(gw, "Acme")
    assert outcome.is_fallback
    assert outcome.value.confidence == "low"


def test_validate_customer_rejects_blank_input_without_calling():
    gw = ScriptedGateway()
    with pytest.raises(ValueError):
        validate_customer(gw, "   ")
    assert gw.calls == []


# -----------------------------------------------------------------------------
# use-case analysis


def test_analysis_normalizes_and_drops_incomplete_entries():
    body = {
        "identifiedUseCases": [
            {"category": "business use case", "name": "Customer 360", "description": "Unified view", "confidence": "high"},
            {"category": "Platform", "name": "Data Warehousing", "description": "Lakehouse SQL", "confidence": "Medium"},
            {"category": "Business Use Case", "name": "Customer 360", "description": "dup", "confidence": "low"},
            {"category": "Business Use Case", "name": "Churn", "description": "", "confidence": "low"},
            {"category": "Other", "name": "Mystery", "description": "?", "confidence": "low"},
        ],
        "summary": "Retailer modernizing analytics",
    }
    gw = ScriptedGateway("```json\n" + json.dumps(body) + "\n```")
    outcome = analyze_use_cases(gw, "notes", "Retail")
    assert not outcome.is_fallback
    use_cases = outcome.value.identified_use_cases
    assert [uc.key for uc in use_cases] == ["Customer 360-Business Use Case", "Data Warehousing-Platform Use Case"]
    assert use_cases[1].confidence == "medium"
    assert "Retail industry" in gw.calls[0]["prompt"]


def test_analysis_placeholder_on_garbage():
    gw = ScriptedGateway("I am unable to help with that.")
    outcome = analyze_use_cases(gw, "notes", None)
    assert outcome.is_fallback
    (only,) = outcome.value.identified_use_cases
    assert only.name == "Data Analytics"
    assert only.confidence == "low"
    assert outcome.value.summary.startswith("Unable to parse detailed analysis")


# -----------------------------------------------------------------------------
# filter + generate


def test_filter_returns_plain_text():
    gw = ScriptedGateway("  They forecast demand in spreadsheets.  ")
    filtered = filter_content(gw, "Demand Forecasting", "long notes")
    assert filtered.found
    assert filtered.text == "They forecast demand in spreadsheets."


@pytest.mark.parametrize("raw", ["", NO_CONTENT_MARKER, "no specific content found for this use case."])
def test_filter_no_content_marker(raw):
    filtered = filter_content(ScriptedGateway(raw), "Demand Forecasting", "notes")
    assert not filtered.found
    assert filtered.text == NO_CONTENT_MARKER


def test_generate_clamps_bad_scores_and_defaults_lists():
    gw = ScriptedGateway(
        json.dumps(
            {
                "problemStatement": "They faced slow forecasts.",
                "databricksSolution": "They built models on Databricks.",
                "impact": "Cut stockouts by 20%||Saved 10 hours a week",
                "problemConfidence": 1.7,
                "solutionConfidence": "high",
                "impactConfidence": 0.9,
            }
        )
    )
    outcome = generate_content(gw, "Demand Forecasting", "Business Use Case", _filtered())
    content = outcome.value
    assert not outcome.is_fallback
    assert (content.problem_confidence, content.solution_confidence, content.impact_confidence) == (0.5, 0.5, 0.9)
    assert content.problem_suggestions == [] and content.impact_suggestions == []
    assert gw.calls[0]["temperature"] == 0.3


def test_generate_joins_impact_list():
    gw = ScriptedGateway(
        '{"problemStatement": "p", "databricksSolution": "s", "impact": ["first", "second"]}'
    )
    content = generate_content(gw, "X", "Business Use Case", _filtered()).value
    assert content.impact == "first||second"


def test_generate_placeholder_is_category_aware():
    outcome = generate_content(ScriptedGateway("nope"), "Hadoop Migration", "Platform Use Case", _filtered())
    assert outcome.is_fallback
    content = outcome.value
    assert content.problem_confidence == content.solution_confidence == content.impact_confidence == 0.2
    assert "technical" in content.problem_suggestions[0]

    business = generate_content(ScriptedGateway("nope"), "Churn", "Business Use Case", _filtered()).value
    assert "business" in business.problem_suggestions[0]


def test_generate_requires_filtered_content():
    with pytest.raises(TypeError):
        generate_content(ScriptedGateway(), "X", "Business Use Case", "raw notes")  # type: ignore[arg-type]


# -----------------------------------------------------------------------------
# AI edit


def test_ai_edit_parsed_and_applied():
    gw = ScriptedGateway(
        '{"improvedContent": "Better text.", "researchFindings": ["TEI report", "Benchmarks"], "placeholdersUsed": ["XX%"]}'
    )
    outcome = ai_edit_content(gw, "problem", "Old text.", ["be specific"], "Churn", "Business Use Case")
    assert outcome.value.improved_content == "Better text."
    assert outcome.value.research_findings == "TEI report | Benchmarks"
    assert "be specific" in gw.calls[0]["prompt"]

    generated = generate_content(
        ScriptedGateway('{"problemStatement": "Old text.", "databricksSolution": "s", "impact": "a||b", "problemConfidence": 0.3}'),
        "Churn",
        "Business Use Case",
        _filtered(),
    ).value
    edited = apply_ai_edit(generated, "problem", outcome.value)
    assert edited.problem_statement == "Better text."
    assert edited.problem_confidence == 1.0
    assert generated.problem_statement == "Old text."


def test_ai_edit_fallback_echoes_current_content():
    outcome = ai_edit_content(ScriptedGateway("Sorry, I can't."), "solution", "Current.", ["x"], "Churn", "Business Use Case")
    assert outcome.is_fallback
    assert outcome.value.improved_content == "Current."
    assert "Unable to parse" in outcome.value.research_findings


def test_ai_edit_requires_feedback():
    with pytest.raises(ValueError):
        ai_edit_content(ScriptedGateway(), "impact", "Current.", ["  "], "Churn", "Business Use Case")


# -----------------------------------------------------------------------------
# story


def _story_input() -> StoryInput:
    return StoryInput(
        use_case_name="Demand Forecasting",
        use_case_category="Business Use Case",
        problem_statement="They faced stockouts.",
        databricks_solution="They forecast on Databricks.",
        impact="Cut stockouts by 20%||Saved 10 hours a week",
        customer_info=CustomerProfile(company_name="Acme Corp", region="US", industry="Retail"),
    )


STORY = '{"summary": "Acme cut stockouts.", "detailedStory": "Acme faced stockouts and fixed them."}'


def test_story_retries_once_after_gateway_error():
    gw = ScriptedGateway(LLMNetworkError("timeout"), STORY)
    outcome = generate_story(gw, _story_input())
    assert not outcome.is_fallback
    assert outcome.value.summary == "Acme cut stockouts."
    assert len(gw.calls) == 2
    assert gw.calls[0]["temperature"] == 0.4 and gw.calls[0]["max_tokens"] == 600
    assert "- Company: Acme Corp" in gw.calls[0]["prompt"]


def test_story_placeholder_after_two_unparseable_responses():
    gw = ScriptedGateway("nope", '{"summary": "only half"}')
    outcome = generate_story(gw, _story_input())
    assert outcome.is_fallback
    assert outcome.value.summary.startswith("Unable to generate")


def test_story_raises_after_two_gateway_errors():
    gw = ScriptedGateway(LLMNetworkError("down"), LLMNetworkError("still down"))
    with pytest.raises(LLMNetworkError, match="still down"):
        generate_story(gw, _story_input())


def test_story_requires_complete_input():
    story_input = _story_input().model_copy(update={"impact": " "})
    with pytest.raises(ValueError):
        generate_story(ScriptedGateway(), story_input)

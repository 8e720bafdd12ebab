from __future__ import annotations

import pytest

from storycraft.prompts import (
    NO_CONTENT_MARKER,
    YamlPromptRepository,
    ai_edit_prompt,
    customer_validation_prompt,
    filter_content_prompt,
    story_prompt,
    use_case_analysis_prompt,
)
from storycraft.schemas.models import StoryInput


def test_step_generation_settings():
    assert (customer_validation_prompt("Acme").temperature, customer_validation_prompt("Acme").max_tokens) == (0.1, 800)
    analysis = use_case_analysis_prompt("notes", None)
    assert (analysis.temperature, analysis.max_tokens) == (0.2, 1200)
    assert "framed for the relevant industry" in analysis.text


def test_filter_prompt_names_the_no_content_marker():
    req = filter_content_prompt("Churn", "notes")
    assert NO_CONTENT_MARKER in req.text
    assert (req.temperature, req.max_tokens) == (0.1, 600)


@pytest.mark.parametrize("section", ["problem", "solution", "impact"])
def test_ai_edit_prompt_renders_every_section(section):
    req = ai_edit_prompt(section, "Current.", ["more numbers", "shorter"], "Churn", "Business Use Case")
    assert f"- Section: {section}" in req.text
    assert "- AI Feedback: more numbers; shorter" in req.text
    assert "$section_instructions" not in req.text
    assert (req.temperature, req.max_tokens) == (0.4, 600)


def test_impact_instructions_keep_literal_dollars():
    req = ai_edit_prompt("impact", "a||b", ["x"], "Churn", "Business Use Case")
    assert '"$XX,XXX cost reduction"' in req.text


def test_story_prompt_fills_customer_defaults():
    req = story_prompt(StoryInput(use_case_name="Churn", problem_statement="p", databricks_solution="s", impact="i"))
    assert "- Company: Customer" in req.text
    assert "- Region: Global" in req.text


def test_unknown_template(tmp_path):
    path = tmp_path / "prompts.yaml"
    path.write_text("prompts:\n  only:\n    template: hi $name\n", encoding="utf-8")
    repo = YamlPromptRepository(path)
    assert repo.get("only").render(name="there") == "hi there"
    with pytest.raises(KeyError):
        repo.get("missing")

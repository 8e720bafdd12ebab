from __future__ import annotations

import json
from urllib.parse import parse_qs

import httpx
import pytest

from storycraft.state import new_wizard_state
from storycraft.state import session as wizard
from storycraft.tools.export import DocumentExporter
from storycraft.tools.llm import LLMNetworkError, MockGateway

NOTES = "We want to forecast demand across 120 stores. Our data warehouse is slow and expensive."
FORECASTING = "Demand Forecasting-Business Use Case"
WAREHOUSING = "Data Warehousing-Platform Use Case"


@pytest.fixture
def gateway():
    return MockGateway()


@pytest.fixture
def state(gateway):
    state = new_wizard_state()
    wizard.submit_customer(state, gateway, "Acme Corp, a renewable energy company based in Texas")
    wizard.confirm_customer(state)
    wizard.submit_notes(state, gateway, NOTES)
    return state


def _exporter(posted):
    def handler(request: httpx.Request) -> httpx.Response:
        posted.append(json.loads(parse_qs(request.content.decode())["data"][0]))
        return httpx.Response(200, json={"status": "success", "url": "https://docs.example.com/d/42"})

    return DocumentExporter("https://script.example.com/exec", client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_customer_and_analysis_steps(state):
    assert state["customer_confirmed"]
    assert state["customer_profile"].company_name == "Acme Corp"
    assert state["step"] == "USE_CASE_SELECTION"
    assert len(state["candidate_use_cases"]) == 5
    assert state["selected_keys"] == [uc.key for uc in state["candidate_use_cases"]]
    assert [e["event"] for e in state["audit_log"]] == ["customer_validated", "use_cases_identified"]


def test_reenter_customer_goes_back():
    state = new_wizard_state()
    wizard.submit_customer(state, MockGateway(), "Acme Corp")
    wizard.reenter_customer(state)
    assert state["step"] == "CUSTOMER"
    assert state["customer_profile"] is None
    with pytest.raises(ValueError):
        wizard.confirm_customer(state)


def test_manual_use_case_is_high_confidence_and_unique(state):
    added = wizard.add_use_case(state, "  Fraud Detection ", "Business Use Case")
    assert added.confidence == "high"
    assert added.key in state["selected_keys"]

    with pytest.raises(wizard.DuplicateUseCaseError):
        wizard.add_use_case(state, "Fraud Detection", "Business Use Case")
    with pytest.raises(wizard.DuplicateUseCaseError):
        wizard.add_use_case(state, "Demand Forecasting", "Business Use Case")
    # same name, other category is a different use case
    wizard.add_use_case(state, "Fraud Detection", "Platform Use Case")


def test_selection_ignores_unknown_and_repeated_keys(state):
    wizard.set_selection(state, [WAREHOUSING, "Nope-Business Use Case", WAREHOUSING, FORECASTING])
    assert state["selected_keys"] == [WAREHOUSING, FORECASTING]
    assert [uc.name for uc in wizard.selected_use_cases(state)] == ["Data Warehousing", "Demand Forecasting"]


def test_export_is_gated_until_every_section_is_accepted(state, gateway, tracker):
    wizard.set_selection(state, [FORECASTING, WAREHOUSING])
    wizard.generate_contents(state, tracker, gateway)

    assert state["step"] == "CONTENT"
    assert set(state["contents"]) == {FORECASTING, WAREHOUSING}
    # forecasting notes carry numbers, so every section clears the threshold
    assert tracker.is_validated(FORECASTING)
    # the warehouse sentence has no metrics: impact stays below threshold
    assert wizard.pending_sections(state, tracker, WAREHOUSING) == ["impact"]
    assert not wizard.can_export(state, tracker)

    posted = []
    with pytest.raises(ValueError):
        wizard.export_stories(state, tracker, gateway, _exporter(posted))
    assert posted == []

    assert wizard.accept_section(state, tracker, WAREHOUSING, "impact") is True
    assert wizard.can_export(state, tracker)

    result = wizard.export_stories(state, tracker, gateway, _exporter(posted))
    assert result.total_exported == 2
    assert state["export_url"] == "https://docs.example.com/d/42"
    assert state["step"] == "EXPORT"
    rows = posted[0]
    assert [r["description"] for r in rows] == ["Demand Forecasting", "Data Warehousing"]
    assert {r["customerName"] for r in rows} == {"Acme Corp"}
    assert rows[1]["notes"].startswith("AI Recommendations:")


def test_ai_edit_replaces_section_and_records_findings(state, gateway, tracker):
    wizard.set_selection(state, [WAREHOUSING])
    wizard.generate_contents(state, tracker, gateway)

    result = wizard.request_ai_edit(state, tracker, gateway, WAREHOUSING, "impact", ["add metrics"])

    content = state["contents"][WAREHOUSING]
    assert content.impact == result.improved_content
    assert content.impact_confidence == 1.0
    assert tracker.is_validated(WAREHOUSING)
    assert state["research_findings"][WAREHOUSING] == ["Databricks internal benchmarks | TEI report"]


def test_manual_edit_keeps_acceptance(state, gateway, tracker):
    wizard.set_selection(state, [FORECASTING])
    wizard.generate_contents(state, tracker, gateway)

    wizard.save_manual_edit(state, FORECASTING, "problem", "  Forecasts took a week.  ")
    assert state["contents"][FORECASTING].problem_statement == "Forecasts took a week."
    assert tracker.is_validated(FORECASTING)
    with pytest.raises(ValueError):
        wizard.save_manual_edit(state, FORECASTING, "problem", " ")


def test_generation_requires_a_selection(state, gateway, tracker):
    wizard.set_selection(state, [])
    with pytest.raises(ValueError):
        wizard.generate_contents(state, tracker, gateway)


def test_reset_clears_state_and_tracker(state, gateway, tracker):
    wizard.set_selection(state, [FORECASTING])
    wizard.generate_contents(state, tracker, gateway)
    wizard.reset(state, tracker)

    assert state == new_wizard_state()
    assert tracker.summary()["total_use_cases"] == 0


def test_snapshot_restores_the_wizard(state, gateway, tracker, tmp_path):
    wizard.set_selection(state, [FORECASTING])
    wizard.generate_contents(state, tracker, gateway)
    path = tmp_path / "abc.wizard.json"
    wizard.save_snapshot(path, state)

    restored = wizard.load_snapshot(path)
    assert restored["step"] == "CONTENT"
    assert restored["customer_profile"] == state["customer_profile"]
    assert restored["contents"][FORECASTING] == state["contents"][FORECASTING]
    assert [uc.key for uc in restored["candidate_use_cases"]] == [uc.key for uc in state["candidate_use_cases"]]
    assert restored["audit_log"] == state["audit_log"]


def test_missing_or_corrupt_snapshot(tmp_path):
    assert wizard.load_snapshot(tmp_path / "none.json") is None
    bad = tmp_path / "bad.json"
    bad.write_text("{", encoding="utf-8")
    assert wizard.load_snapshot(bad) is None


class DownFor(MockGateway):
    """Mock whose calls fail while the prompt mentions `needle`."""

    def __init__(self, needle: str):
        super().__init__()
        self.needle = needle

    def call(self, prompt, *, temperature=None, max_tokens=None):
        if self.needle in prompt:
            raise LLMNetworkError("boom")
        return super().call(prompt, temperature=temperature, max_tokens=max_tokens)


def test_retry_recovers_a_failed_use_case(state, tracker):
    wizard.set_selection(state, [FORECASTING, WAREHOUSING])
    wizard.generate_contents(state, tracker, DownFor("Data Warehousing"))

    assert WAREHOUSING in state["content_errors"]
    assert WAREHOUSING not in state["contents"]
    assert tracker.is_validated(FORECASTING)
    assert not wizard.can_export(state, tracker)
    forecasting = state["contents"][FORECASTING]

    # still down: the error stays
    assert wizard.retry_use_case(state, tracker, DownFor("Data Warehousing"), WAREHOUSING) is False
    assert WAREHOUSING in state["content_errors"]

    gateway = MockGateway()
    assert wizard.retry_use_case(state, tracker, gateway, WAREHOUSING) is True
    assert WAREHOUSING not in state["content_errors"]
    assert WAREHOUSING in state["contents"]
    assert all("Demand Forecasting" not in c["prompt"] for c in gateway.calls)
    assert state["contents"][FORECASTING] is forecasting
    assert tracker.is_validated(FORECASTING)
    assert state["audit_log"][-1]["event"] == "content_retried"

    wizard.accept_section(state, tracker, WAREHOUSING, "impact")
    assert wizard.can_export(state, tracker)


def test_retry_unknown_use_case(state, gateway, tracker):
    with pytest.raises(KeyError):
        wizard.retry_use_case(state, tracker, gateway, "Nope-Business Use Case")


def test_ai_edit_defaults_feedback_to_suggestions(state, gateway, tracker):
    wizard.set_selection(state, [WAREHOUSING])
    wizard.generate_contents(state, tracker, gateway)
    content = state["contents"][WAREHOUSING]

    assert wizard.suggested_feedback(content, "impact") == "Add measurable outcomes such as % cost reduction"

    wizard.request_ai_edit(state, tracker, gateway, WAREHOUSING, "impact", ["  "])
    assert "Add measurable outcomes such as % cost reduction" in gateway.calls[-1]["prompt"]
    assert tracker.is_validated(WAREHOUSING)

"""Wizard actions over `WizardState`.

The Streamlit app calls these on button clicks; they never touch Streamlit
themselves, so the whole flow is testable with a plain dict.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from storycraft.pipeline.batch import UseCaseRun, generate_all_stories, process_use_cases
from storycraft.pipeline.outcomes import StageError
from storycraft.pipeline.steps import (
    ai_edit_content,
    analyze_use_cases,
    apply_ai_edit,
    build_story_input,
    validate_customer,
)
from storycraft.prompts import PromptRepository
from storycraft.schemas.models import (
    SECTIONS,
    AIEditResult,
    CustomerProfile,
    ExportResult,
    GeneratedContent,
    IdentifiedUseCase,
    Section,
    UseCaseAnalysis,
)
from storycraft.state.models import WizardState, new_wizard_state
from storycraft.state.validation import ValidationTracker
from storycraft.tools.audit import record
from storycraft.tools.export import DocumentExporter, format_story_records
from storycraft.tools.llm import LLMGateway

logger = logging.getLogger(__name__)


class DuplicateUseCaseError(ValueError):
    pass


def reset(state: WizardState, tracker: ValidationTracker) -> None:
    state.clear()
    state.update(new_wizard_state())
    tracker.clear()


# -----------------------------------------------------------------------------
# Customer


def submit_customer(
    state: WizardState,
    gateway: LLMGateway,
    details: str,
    *,
    prompts: Optional[PromptRepository] = None,
) -> None:
    outcome = validate_customer(gateway, details, prompts=prompts)
    state["customer_details"] = details.strip()
    state["customer_profile"] = outcome.value
    state["customer_confirmed"] = False
    state["step"] = "CUSTOMER_REVIEW"
    record(
        state["audit_log"],
        "customer_validated",
        {"company": outcome.value.company_name, "confidence": outcome.value.confidence, "fallback": outcome.is_fallback},
    )


def confirm_customer(state: WizardState) -> None:
    if state.get("customer_profile") is None:
        raise ValueError("No customer profile to confirm")
    state["customer_confirmed"] = True
    state["step"] = "USE_CASE_NOTES"


def reenter_customer(state: WizardState) -> None:
    state["customer_profile"] = None
    state["customer_confirmed"] = False
    state["step"] = "CUSTOMER"


# -----------------------------------------------------------------------------
# Use cases


def submit_notes(
    state: WizardState,
    gateway: LLMGateway,
    notes: str,
    *,
    prompts: Optional[PromptRepository] = None,
) -> None:
    profile = state.get("customer_profile")
    outcome = analyze_use_cases(gateway, notes, profile.industry if profile else None, prompts=prompts)
    state["customer_notes"] = notes.strip()
    state["analysis"] = outcome.value
    state["candidate_use_cases"] = list(outcome.value.identified_use_cases)
    state["selected_keys"] = [uc.key for uc in outcome.value.identified_use_cases]
    state["step"] = "USE_CASE_SELECTION"
    record(
        state["audit_log"],
        "use_cases_identified",
        {"count": len(state["candidate_use_cases"]), "fallback": outcome.is_fallback},
    )


def add_use_case(state: WizardState, name: str, category: str, description: str = "") -> IdentifiedUseCase:
    """Hand-authored use cases are always high confidence and selected on add."""
    if not (name or "").strip():
        raise ValueError("Use case name is required")
    use_case = IdentifiedUseCase(
        name=name.strip(),
        category=category,  # type: ignore[arg-type]
        description=(description or "").strip() or "Added manually",
        confidence="high",
    )
    if any(uc.key == use_case.key for uc in state["candidate_use_cases"]):
        raise DuplicateUseCaseError(f"A use case named '{use_case.name}' already exists in {use_case.category}")
    state["candidate_use_cases"].append(use_case)
    state["selected_keys"].append(use_case.key)
    return use_case


def set_selection(state: WizardState, keys: List[str]) -> None:
    known = {uc.key for uc in state["candidate_use_cases"]}
    selected: List[str] = []
    for key in keys:
        if key in known and key not in selected:
            selected.append(key)
    state["selected_keys"] = selected


def selected_use_cases(state: WizardState) -> List[IdentifiedUseCase]:
    by_key: Dict[str, IdentifiedUseCase] = {uc.key: uc for uc in state["candidate_use_cases"]}
    return [by_key[k] for k in state["selected_keys"] if k in by_key]


# -----------------------------------------------------------------------------
# Content


def _store_run(state: WizardState, tracker: ValidationTracker, run: UseCaseRun, event: str) -> bool:
    key = run.key
    tracker.initialize(key, run.use_case.name, run.use_case.category)
    if isinstance(run.result, StageError):
        state["content_errors"][key] = run.result.message
        return False
    state["content_errors"].pop(key, None)
    content = run.result.value.value
    state["contents"][key] = content
    tracker.apply_confidences(key, content)
    record(state["audit_log"], event, {"use_case": key, "fallback": run.result.value.is_fallback})
    return True


def generate_contents(
    state: WizardState,
    tracker: ValidationTracker,
    gateway: LLMGateway,
    *,
    prompts: Optional[PromptRepository] = None,
) -> None:
    use_cases = selected_use_cases(state)
    if not use_cases:
        raise ValueError("Select at least one use case")

    for run in process_use_cases(gateway, use_cases, state["customer_notes"], prompts=prompts):
        _store_run(state, tracker, run, "content_generated")
    state["step"] = "CONTENT"


def retry_use_case(
    state: WizardState,
    tracker: ValidationTracker,
    gateway: LLMGateway,
    key: str,
    *,
    prompts: Optional[PromptRepository] = None,
) -> bool:
    """Rerun filter and generate for one failed use case. Other use cases are left alone."""
    use_case = next((uc for uc in selected_use_cases(state) if uc.key == key), None)
    if use_case is None:
        raise KeyError(key)
    run = process_use_cases(gateway, [use_case], state["customer_notes"], prompts=prompts)[0]
    return _store_run(state, tracker, run, "content_retried")


def accept_section(state: WizardState, tracker: ValidationTracker, key: str, section: Section) -> bool:
    changed = tracker.update_section(key, section, True)
    record(state["audit_log"], "section_accepted", {"use_case": key, "section": section})
    return changed


def save_manual_edit(state: WizardState, key: str, section: Section, text: str) -> None:
    """A manual edit replaces the text; the reviewer's acceptance is kept as-is."""
    content = state["contents"].get(key)
    if content is None:
        raise KeyError(key)
    if not (text or "").strip():
        raise ValueError("Content cannot be empty")
    state["contents"][key] = content.with_section(section, text.strip())
    record(state["audit_log"], "section_edited", {"use_case": key, "section": section})


def suggested_feedback(content: GeneratedContent, section: Section) -> str:
    """Prefill for the AI-edit box: the section's generated suggestions, one per line."""
    return "\n".join(s.strip() for s in content.suggestions_for(section) if s and s.strip())


def request_ai_edit(
    state: WizardState,
    tracker: ValidationTracker,
    gateway: LLMGateway,
    key: str,
    section: Section,
    feedback: List[str],
    *,
    prompts: Optional[PromptRepository] = None,
) -> AIEditResult:
    content = state["contents"].get(key)
    if content is None:
        raise KeyError(key)
    use_case = next((uc for uc in state["candidate_use_cases"] if uc.key == key), None)
    name = use_case.name if use_case else key
    category = use_case.category if use_case else ""
    points = [f.strip() for f in feedback if f and f.strip()] or suggested_feedback(content, section).splitlines()

    outcome = ai_edit_content(
        gateway, section, content.text_for(section), points, name, category, prompts=prompts
    )
    result = outcome.value
    if outcome.is_fallback:
        # Nothing was improved; leave the section and its acceptance untouched.
        return result

    state["contents"][key] = apply_ai_edit(content, section, result)
    tracker.update_section(key, section, True)
    if result.research_findings:
        state["research_findings"].setdefault(key, []).append(result.research_findings)
    record(state["audit_log"], "ai_edit", {"use_case": key, "section": section})
    return result


def can_export(state: WizardState, tracker: ValidationTracker) -> bool:
    return tracker.all_validated(state["selected_keys"])


def pending_sections(state: WizardState, tracker: ValidationTracker, key: str) -> List[Section]:
    return [s for s in SECTIONS if not tracker.section_validated(key, s)]


# -----------------------------------------------------------------------------
# Export


def export_stories(
    state: WizardState,
    tracker: ValidationTracker,
    gateway: LLMGateway,
    exporter: DocumentExporter,
    *,
    prompts: Optional[PromptRepository] = None,
) -> ExportResult:
    """Stories are regenerated on every attempt, then sent as one batch."""
    if not can_export(state, tracker):
        raise ValueError("All selected use cases must be validated before export")

    customer = state.get("customer_profile")
    story_inputs = []
    for use_case in selected_use_cases(state):
        content = state["contents"].get(use_case.key)
        if content is None:
            continue
        story_inputs.append(build_story_input(use_case.name, use_case.category, content, customer))

    try:
        stories = generate_all_stories(gateway, story_inputs, prompts=prompts)
        records = format_story_records(stories, customer, state["contents"], state["research_findings"])
        result = exporter.export(records)
    except Exception as e:
        state["export_error"] = str(e)
        state["export_url"] = None
        logger.error("[export-stories] %s", e)
        raise

    state["export_error"] = None
    state["export_url"] = result.url
    state["step"] = "EXPORT"
    record(state["audit_log"], "exported", {"total": result.total_exported, "url": result.url})
    return result


# -----------------------------------------------------------------------------
# Snapshots


def dump_state(state: WizardState) -> Dict[str, Any]:
    profile = state.get("customer_profile")
    analysis = state.get("analysis")
    return {
        "schema_version": 1,
        "step": state["step"],
        "customer_details": state["customer_details"],
        "customer_profile": profile.to_wire() if profile else None,
        "customer_confirmed": state["customer_confirmed"],
        "customer_notes": state["customer_notes"],
        "analysis": analysis.to_wire() if analysis else None,
        "candidate_use_cases": [uc.to_wire() for uc in state["candidate_use_cases"]],
        "selected_keys": list(state["selected_keys"]),
        "contents": {k: c.to_wire() for k, c in state["contents"].items()},
        "content_errors": dict(state["content_errors"]),
        "research_findings": {k: list(v) for k, v in state["research_findings"].items()},
        "export_url": state["export_url"],
        "export_error": state["export_error"],
        "audit_log": list(state["audit_log"]),
    }


def load_state(data: Dict[str, Any]) -> WizardState:
    state = new_wizard_state()
    state["step"] = data.get("step") or "CUSTOMER"
    state["customer_details"] = data.get("customer_details") or ""
    if data.get("customer_profile"):
        state["customer_profile"] = CustomerProfile.model_validate(data["customer_profile"])
    state["customer_confirmed"] = bool(data.get("customer_confirmed"))
    state["customer_notes"] = data.get("customer_notes") or ""
    if data.get("analysis"):
        state["analysis"] = UseCaseAnalysis.model_validate(data["analysis"])
    state["candidate_use_cases"] = [IdentifiedUseCase.model_validate(uc) for uc in data.get("candidate_use_cases") or []]
    state["selected_keys"] = list(data.get("selected_keys") or [])
    state["contents"] = {k: GeneratedContent.model_validate(v) for k, v in (data.get("contents") or {}).items()}
    state["content_errors"] = dict(data.get("content_errors") or {})
    state["research_findings"] = {k: list(v) for k, v in (data.get("research_findings") or {}).items()}
    state["export_url"] = data.get("export_url")
    state["export_error"] = data.get("export_error")
    state["audit_log"] = list(data.get("audit_log") or [])
    return state


def save_snapshot(path: Path, state: WizardState) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(dump_state(state), ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(path)


def load_snapshot(path: Path) -> Optional[WizardState]:
    if not path.exists():
        return None
    try:
        return load_state(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError) as e:
        logger.warning("Ignoring unreadable wizard snapshot %s: %s", path, e)
        return None

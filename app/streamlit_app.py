from __future__ import annotations

from dotenv import load_dotenv
load_dotenv()  # loads .env into os.environ


import logging
import uuid
from pathlib import Path
from typing import Any, Dict, List

import streamlit as st

from storycraft.config import Settings
from storycraft.schemas.models import SECTIONS, GeneratedContent, Section, split_impact
from storycraft.state import FileValidationStore, ValidationTracker, new_wizard_state
from storycraft.state import session as wizard
from storycraft.tools.export import DocumentExporter
from storycraft.tools.llm import LLMGatewayError, build_gateway


logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")

st.set_page_config(page_title="Customer Story Wizard", page_icon="📝", layout="wide")


SECTION_TITLES: Dict[str, str] = {
    "problem": "Problem statement",
    "solution": "Databricks solution",
    "impact": "Impact",
}

STEP_TITLES: Dict[str, str] = {
    "CUSTOMER": "1. Customer",
    "CUSTOMER_REVIEW": "2. Review customer",
    "USE_CASE_NOTES": "3. Customer notes",
    "USE_CASE_SELECTION": "4. Use cases",
    "CONTENT": "5. Content",
    "EXPORT": "6. Export",
}


def _get_query_params() -> Dict[str, Any]:
    qp = getattr(st, "query_params", None)
    if qp is not None:
        return dict(qp)
    return {}


def _query_value(name: str) -> str | None:
    raw = _get_query_params().get(name)
    value = raw[0] if isinstance(raw, list) and raw else raw
    text = str(value or "").strip()
    return text or None


def _query_flag(name: str, default: bool = False) -> bool:
    """Return True when URL query param is set (e.g. ?debug=1)."""
    raw = _get_query_params().get(name)
    if raw is None:
        return default
    value = raw[0] if isinstance(raw, list) and raw else raw
    text = str(value).strip().lower()
    if text in ("0", "false", "f", "no", "n", "off"):
        return False
    return True


@st.cache_resource
def get_settings() -> Settings:
    return Settings.from_env()


@st.cache_resource
def get_gateway():
    return build_gateway(get_settings())


def get_exporter() -> DocumentExporter:
    settings = get_settings()
    return DocumentExporter(settings.export_url, timeout=settings.http_timeout)


def _session_id() -> str:
    """Session id kept in the URL (?session=...), so a reload resumes the same wizard."""
    sid = _query_value("session")
    if not sid:
        sid = uuid.uuid4().hex
        st.query_params["session"] = sid
    return sid


def _snapshot_path(sid: str) -> Path:
    return Path(get_settings().session_dir) / f"{sid}.wizard.json"


def get_tracker(sid: str) -> ValidationTracker:
    return ValidationTracker(FileValidationStore(get_settings().session_dir, sid))


def ensure_session(sid: str) -> Dict[str, Any]:
    if st.session_state.get("session_id") != sid or "wizard" not in st.session_state:
        st.session_state.session_id = sid
        st.session_state.wizard = wizard.load_snapshot(_snapshot_path(sid)) or new_wizard_state()
    return st.session_state.wizard


def _confidence_badge(score: float) -> str:
    if score >= 0.7:
        return f":green[{score:.0%} confidence]"
    if score >= 0.4:
        return f":orange[{score:.0%} confidence]"
    return f":red[{score:.0%} confidence]"


def _run(action, *args, **kwargs) -> bool:
    """Run a wizard action, surfacing failures as an error banner."""
    try:
        with st.spinner("Working…"):
            action(*args, **kwargs)
    except (LLMGatewayError, ValueError, KeyError) as e:
        st.error(str(e))
        return False
    return True


def sidebar(state, tracker: ValidationTracker) -> None:
    st.sidebar.markdown("## Customer Story Wizard")
    st.sidebar.caption(f"LLM provider: {get_settings().llm_provider}")

    if st.sidebar.button("Start over"):
        wizard.reset(state, tracker)
        st.rerun()

    st.sidebar.divider()
    for step, title in STEP_TITLES.items():
        marker = "▶ " if state["step"] == step else ""
        st.sidebar.write(f"{marker}{title}")

    summary = tracker.summary()
    if summary["total_use_cases"]:
        st.sidebar.divider()
        st.sidebar.write(f"**Validated**: {summary['validated_use_cases']} / {summary['total_use_cases']}")

    if _query_flag("debug", default=False):
        st.sidebar.divider()
        with st.sidebar.expander("Debug / Audit"):
            st.write("**Step**:", state["step"])
            st.write("**Selected**:", state["selected_keys"])
            st.write("**Validation**")
            st.json(tracker.store.load())
            st.write("**Audit log**")
            st.json(state["audit_log"])


# -----------------------------------------------------------------------------
# Panels


def customer_panel(state) -> None:
    st.subheader("Who is the customer?")
    details = st.text_area(
        "Customer details",
        value=state["customer_details"],
        placeholder="Company name, region, anything else you know",
        height=120,
    )
    if st.button("Validate customer", type="primary", disabled=not details.strip()):
        if _run(wizard.submit_customer, state, get_gateway(), details):
            st.rerun()


def customer_review_panel(state) -> None:
    profile = state["customer_profile"]
    st.subheader("Is this the right customer?")
    col1, col2, col3 = st.columns(3)
    col1.metric("Company", profile.company_name or "Unknown")
    col2.metric("Region", profile.region or "Unknown")
    col3.metric("Industry", profile.industry or "Unknown")
    st.write(f"**Confidence**: {profile.confidence}")
    if profile.additional_info:
        st.caption(profile.additional_info)
    if profile.suggestions:
        st.info(profile.suggestions)

    c1, c2 = st.columns(2)
    if c1.button("Confirm", type="primary"):
        wizard.confirm_customer(state)
        st.rerun()
    if c2.button("Re-enter details"):
        wizard.reenter_customer(state)
        st.rerun()


def notes_panel(state) -> None:
    profile = state["customer_profile"]
    st.subheader(f"Customer notes for {profile.company_name}")
    notes = st.text_area(
        "Paste meeting notes, emails or account plans",
        value=state["customer_notes"],
        height=260,
    )
    if st.button("Identify use cases", type="primary", disabled=not notes.strip()):
        if _run(wizard.submit_notes, state, get_gateway(), notes):
            st.rerun()


def selection_panel(state, tracker: ValidationTracker) -> None:
    analysis = state["analysis"]
    st.subheader("Identified use cases")
    if analysis and analysis.summary:
        st.caption(analysis.summary)

    chosen: List[str] = []
    for uc in state["candidate_use_cases"]:
        label = f"**{uc.name}** · {uc.category} · {uc.confidence} confidence"
        if st.checkbox(label, value=uc.key in state["selected_keys"], key=f"select::{uc.key}"):
            chosen.append(uc.key)
        st.caption(uc.description)
    wizard.set_selection(state, chosen)

    with st.expander("Add a use case"):
        name = st.text_input("Name", key="new_use_case_name")
        category = st.selectbox("Category", ["Platform Use Case", "Business Use Case"], key="new_use_case_category")
        description = st.text_input("Description", key="new_use_case_description")
        if st.button("Add"):
            try:
                wizard.add_use_case(state, name, category, description)
            except ValueError as e:
                st.error(str(e))
            else:
                st.rerun()

    if st.button("Generate content", type="primary", disabled=not state["selected_keys"]):
        if _run(wizard.generate_contents, state, tracker, get_gateway()):
            st.rerun()


def _render_section(state, tracker: ValidationTracker, key: str, content: GeneratedContent, section: Section) -> None:
    text = content.text_for(section)
    accepted = tracker.section_validated(key, section)
    badge = ":green[accepted]" if accepted else _confidence_badge(content.confidence_for(section))
    st.markdown(f"**{SECTION_TITLES[section]}** {badge}")

    if section == "impact":
        for statement in split_impact(text):
            st.markdown(f"- {statement}")
    else:
        st.write(text)

    for suggestion in content.suggestions_for(section):
        st.caption(f"💡 {suggestion}")

    edit_key = f"edit::{key}::{section}"
    c1, c2 = st.columns(2)
    if not accepted and c1.button("Accept", key=f"accept::{key}::{section}"):
        wizard.accept_section(state, tracker, key, section)
        st.rerun()
    if c2.toggle("Edit", key=f"{edit_key}::open"):
        new_text = st.text_area("Content", value=text, key=edit_key)
        if st.button("Save", key=f"{edit_key}::save"):
            try:
                wizard.save_manual_edit(state, key, section, new_text)
            except (ValueError, KeyError) as e:
                st.error(str(e))
            else:
                st.rerun()
        feedback = st.text_area(
            "Feedback for AI edit (one point per line)",
            value=wizard.suggested_feedback(content, section),
            key=f"{edit_key}::feedback",
        )
        if st.button("AI edit", key=f"{edit_key}::ai"):
            points = [line.strip() for line in feedback.splitlines() if line.strip()]
            if _run(wizard.request_ai_edit, state, tracker, get_gateway(), key, section, points):
                st.rerun()


def content_panel(state, tracker: ValidationTracker) -> None:
    st.subheader("Review generated content")
    st.caption("Sections at 70% confidence or above are accepted automatically.")

    for uc in wizard.selected_use_cases(state):
        key = uc.key
        done = tracker.is_validated(key)
        with st.expander(f"{'✅' if done else '⬜'} {uc.name} · {uc.category}", expanded=not done):
            error = state["content_errors"].get(key)
            if error:
                st.error(error)
                if st.button("Retry", key=f"retry::{key}"):
                    if _run(wizard.retry_use_case, state, tracker, get_gateway(), key):
                        st.rerun()
                continue
            content = state["contents"].get(key)
            if content is None:
                st.warning("No content generated for this use case yet.")
                continue
            for section in SECTIONS:
                _render_section(state, tracker, key, content, section)
                st.divider()
            findings = state["research_findings"].get(key)
            if findings:
                st.caption("Research: " + "; ".join(findings))

    ready = wizard.can_export(state, tracker)
    if not ready:
        st.info("Accept every section of every selected use case to enable export.")
    if st.button("Export stories", type="primary", disabled=not ready):
        try:
            with st.spinner("Writing stories and building the document…"):
                wizard.export_stories(state, tracker, get_gateway(), get_exporter())
        except Exception as e:
            st.error(f"Export failed: {e}")
        else:
            st.rerun()


def export_panel(state) -> None:
    st.subheader("Export complete")
    if state["export_url"]:
        st.success("Your customer stories document is ready.")
        st.link_button("Open document", state["export_url"])
    else:
        st.success("Stories exported.")
    if st.button("Back to content"):
        state["step"] = "CONTENT"
        st.rerun()


def main():
    sid = _session_id()
    state = ensure_session(sid)
    tracker = get_tracker(sid)
    sidebar(state, tracker)

    st.title("Customer Story Wizard")
    step = state["step"]
    if step == "CUSTOMER":
        customer_panel(state)
    elif step == "CUSTOMER_REVIEW":
        customer_review_panel(state)
    elif step == "USE_CASE_NOTES":
        notes_panel(state)
    elif step == "USE_CASE_SELECTION":
        selection_panel(state, tracker)
    elif step == "CONTENT":
        content_panel(state, tracker)
    else:
        export_panel(state)

    wizard.save_snapshot(_snapshot_path(sid), state)


main()

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional
from typing_extensions import TypedDict

from storycraft.pipeline.outcomes import Outcome, StageError
from storycraft.schemas.models import (
    CustomerProfile,
    FilteredContent,
    GeneratedContent,
    IdentifiedUseCase,
    UseCaseAnalysis,
)


Step = Literal[
    "CUSTOMER",
    "CUSTOMER_REVIEW",
    "USE_CASE_NOTES",
    "USE_CASE_SELECTION",
    "CONTENT",
    "EXPORT",
]


class SectionFlags(TypedDict):
    problem: bool
    solution: bool
    impact: bool


class ValidationRecord(TypedDict):
    use_case_key: str
    use_case_name: str
    use_case_category: str
    validation_state: SectionFlags
    is_fully_validated: bool


class AuditEvent(TypedDict):
    ts: str  # ISO timestamp
    event: str
    details: Dict[str, Any]


class UseCaseRunState(TypedDict, total=False):
    """State of the filter -> generate graph for one use case."""

    use_case: IdentifiedUseCase
    customer_notes: str
    filtered: Optional[FilteredContent]
    outcome: Optional[Outcome[GeneratedContent]]
    error: Optional[StageError]


class WizardState(TypedDict, total=False):
    step: Step

    # customer
    customer_details: str
    customer_profile: Optional[CustomerProfile]
    customer_confirmed: bool

    # use cases
    customer_notes: str
    analysis: Optional[UseCaseAnalysis]
    candidate_use_cases: List[IdentifiedUseCase]
    selected_keys: List[str]

    # per use case, keyed by use-case key
    contents: Dict[str, GeneratedContent]
    content_errors: Dict[str, str]
    research_findings: Dict[str, List[str]]

    # export
    export_url: Optional[str]
    export_error: Optional[str]

    audit_log: List[AuditEvent]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_wizard_state() -> WizardState:
    return {
        "step": "CUSTOMER",
        "customer_details": "",
        "customer_profile": None,
        "customer_confirmed": False,
        "customer_notes": "",
        "analysis": None,
        "candidate_use_cases": [],
        "selected_keys": [],
        "contents": {},
        "content_errors": {},
        "research_findings": {},
        "export_url": None,
        "export_error": None,
        "audit_log": [],
    }

"""Single-call pipeline steps: prompt -> LLM -> parse -> typed outcome.

Every step lets gateway errors propagate (they are real failures the caller
must show), but never raises on a badly shaped response: those become a
`Fallback` carrying a low-confidence placeholder and the reason.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from storycraft.pipeline.outcomes import Fallback, Outcome, Parsed
from storycraft.pipeline.text_miner import mine_field
from storycraft.prompts import (
    NO_CONTENT_MARKER,
    PromptRepository,
    PromptRequest,
    ai_edit_prompt,
    customer_validation_prompt,
    filter_content_prompt,
    generate_content_prompt,
    story_prompt,
    use_case_analysis_prompt,
)
from storycraft.schemas.models import (
    SECTIONS,
    AIEditResult,
    CustomerProfile,
    FilteredContent,
    GeneratedContent,
    IdentifiedUseCase,
    Section,
    StoryContent,
    StoryInput,
    UseCaseAnalysis,
    join_impact,
    make_use_case_key,
)
from storycraft.tools.extraction import extract_json
from storycraft.tools.llm import LLMGateway, LLMGatewayError

logger = logging.getLogger(__name__)

AUTO_ACCEPT_THRESHOLD = 0.7
DEFAULT_SCORE = 0.5
FALLBACK_SCORE = 0.2
STORY_MAX_ATTEMPTS = 2

_CONFIDENCE_LABELS = ("high", "medium", "low")


def _call(gateway: LLMGateway, request: PromptRequest) -> str:
    return gateway.call(request.text, temperature=request.temperature, max_tokens=request.max_tokens)


def _require(value: Optional[str], message: str) -> str:
    if not value or not str(value).strip():
        raise ValueError(message)
    return str(value).strip()


def _confidence_label(value: Any, default: str = "low") -> str:
    text = str(value or "").strip().lower()
    return text if text in _CONFIDENCE_LABELS else default


def _category_label(value: Any) -> Optional[str]:
    text = str(value or "").lower()
    if "platform" in text:
        return "Platform Use Case"
    if "business" in text:
        return "Business Use Case"
    return None


def normalize_score(value: Any) -> float:
    """Confidence scores outside [0, 1] or non-numeric become 0.5."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return DEFAULT_SCORE
    if value != value or value < 0 or value > 1:
        return DEFAULT_SCORE
    return float(value)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v).strip() for v in value if v is not None and str(v).strip()]


def meets_threshold(score: float) -> bool:
    return score >= AUTO_ACCEPT_THRESHOLD


# -----------------------------------------------------------------------------
# Customer validation


def parse_customer_profile(raw: str, customer_details: str) -> Outcome[CustomerProfile]:
    try:
        data = extract_json(raw, greedy=True)
        profile = CustomerProfile(
            company_name=str(data.get("companyName") or "").strip(),
            region=str(data.get("region") or "").strip(),
            industry=str(data.get("industry") or "").strip(),
            confidence=_confidence_label(data.get("confidence")),
            additional_info=str(data.get("additionalInfo") or "").strip(),
            suggestions=(str(data["suggestions"]).strip() or None) if data.get("suggestions") else None,
        )
        if not (profile.company_name and profile.region and profile.industry):
            raise ValueError("Incomplete validation response received")
        return Parsed(profile)
    except ValueError as e:
        logger.warning("[validate-customer] falling back to text mining: %s", e)
        profile = CustomerProfile(
            company_name=mine_field(raw, "company", customer_details.strip()),
            region=mine_field(raw, "region", "Unknown"),
            industry=mine_field(raw, "industry", "Unknown"),
            confidence="low",
            additional_info=raw.strip(),
            suggestions="Please provide more specific company information",
        )
        return Fallback(profile, reason=str(e))


def validate_customer(
    gateway: LLMGateway,
    customer_details: str,
    *,
    prompts: Optional[PromptRepository] = None,
) -> Outcome[CustomerProfile]:
    details = _require(customer_details, "Customer details cannot be empty")
    raw = _call(gateway, customer_validation_prompt(details, repo=prompts))
    return parse_customer_profile(raw, details)


# -----------------------------------------------------------------------------
# Use-case identification


def _placeholder_analysis(raw: str) -> UseCaseAnalysis:
    return UseCaseAnalysis(
        identified_use_cases=[
            IdentifiedUseCase(
                category="Platform Use Case",
                name="Data Analytics",
                description="General data analytics and processing needs identified",
                confidence="low",
            )
        ],
        summary="Unable to parse detailed analysis. Raw response: " + (raw or "")[:200] + "...",
    )


def parse_use_case_analysis(raw: str) -> Outcome[UseCaseAnalysis]:
    try:
        data = extract_json(raw, greedy=True)
        items = data.get("identifiedUseCases")
        if not isinstance(items, list):
            raise ValueError("Invalid analysis response structure")
    except ValueError as e:
        logger.warning("[analyze-use-cases] using placeholder analysis: %s", e)
        return Fallback(_placeholder_analysis(raw), reason=str(e))

    use_cases: List[IdentifiedUseCase] = []
    seen: set[str] = set()
    for item in items:
        if not isinstance(item, dict):
            continue
        name = str(item.get("name") or "").strip()
        description = str(item.get("description") or "").strip()
        category = _category_label(item.get("category"))
        confidence = str(item.get("confidence") or "").strip()
        if not (name and description and category and confidence):
            continue
        key = make_use_case_key(name, category)
        if key in seen:
            continue
        seen.add(key)
        use_cases.append(
            IdentifiedUseCase(
                category=category,  # type: ignore[arg-type]
                name=name,
                description=description,
                confidence=_confidence_label(confidence),  # type: ignore[arg-type]
            )
        )

    return Parsed(UseCaseAnalysis(identified_use_cases=use_cases, summary=str(data.get("summary") or "").strip()))


def analyze_use_cases(
    gateway: LLMGateway,
    customer_content: str,
    industry: Optional[str],
    *,
    prompts: Optional[PromptRepository] = None,
) -> Outcome[UseCaseAnalysis]:
    content = _require(customer_content, "Customer content cannot be empty")
    raw = _call(gateway, use_case_analysis_prompt(content, industry, repo=prompts))
    return parse_use_case_analysis(raw)


# -----------------------------------------------------------------------------
# Content filtering


def filter_content(
    gateway: LLMGateway,
    use_case_name: str,
    customer_notes: str,
    *,
    prompts: Optional[PromptRepository] = None,
) -> FilteredContent:
    name = _require(use_case_name, "Use case name and customer notes are required")
    notes = _require(customer_notes, "Use case name and customer notes are required")
    raw = _call(gateway, filter_content_prompt(name, notes, repo=prompts)).strip()
    if not raw or NO_CONTENT_MARKER.lower() in raw.lower():
        return FilteredContent(use_case_name=name, text=NO_CONTENT_MARKER, found=False)
    return FilteredContent(use_case_name=name, text=raw)


# -----------------------------------------------------------------------------
# Content generation


def placeholder_content(use_case_category: str) -> GeneratedContent:
    platform = "platform" in (use_case_category or "").lower()
    return GeneratedContent(
        problem_statement="Unable to generate problem statement from provided content.",
        databricks_solution="Unable to generate solution description from provided content.",
        impact="Unable to generate impact statement from provided content.",
        problem_confidence=FALLBACK_SCORE,
        solution_confidence=FALLBACK_SCORE,
        impact_confidence=FALLBACK_SCORE,
        problem_suggestions=[
            "Please provide more specific details about technical challenges and infrastructure limitations"
            if platform
            else "Please provide more specific details about business challenges and operational inefficiencies"
        ],
        solution_suggestions=[
            "Please describe specific Databricks platform features and technical capabilities used"
            if platform
            else "Please describe how Databricks enabled specific business outcomes through data and AI"
        ],
        impact_suggestions=[
            "Please include technical metrics like cost reduction, performance improvements, or team productivity gains"
            if platform
            else "Please include business metrics like revenue impact, KPI improvements, or operational efficiency gains"
        ],
    )


def parse_generated_content(raw: str, use_case_category: str) -> Outcome[GeneratedContent]:
    try:
        data = extract_json(raw)
        impact = data.get("impact")
        if isinstance(impact, list):
            impact = join_impact([str(s) for s in impact])
        fields: Dict[str, str] = {
            "problem_statement": str(data.get("problemStatement") or "").strip(),
            "databricks_solution": str(data.get("databricksSolution") or "").strip(),
            "impact": str(impact or "").strip(),
        }
        if not all(fields.values()):
            raise ValueError("Incomplete content generation response received")
    except ValueError as e:
        logger.warning("[generate-content] using placeholder content: %s", e)
        return Fallback(placeholder_content(use_case_category), reason=str(e))

    return Parsed(
        GeneratedContent(
            **fields,
            problem_confidence=normalize_score(data.get("problemConfidence")),
            solution_confidence=normalize_score(data.get("solutionConfidence")),
            impact_confidence=normalize_score(data.get("impactConfidence")),
            problem_suggestions=_string_list(data.get("problemSuggestions")),
            solution_suggestions=_string_list(data.get("solutionSuggestions")),
            impact_suggestions=_string_list(data.get("impactSuggestions")),
        )
    )


def generate_content(
    gateway: LLMGateway,
    use_case_name: str,
    use_case_category: str,
    filtered: FilteredContent,
    *,
    prompts: Optional[PromptRepository] = None,
) -> Outcome[GeneratedContent]:
    if not isinstance(filtered, FilteredContent):
        raise TypeError("generate_content requires the output of filter_content")
    message = "Use case name, category, and filtered content are required"
    name = _require(use_case_name, message)
    category = _require(use_case_category, message)
    text = _require(filtered.text, message)
    raw = _call(gateway, generate_content_prompt(name, category, text, repo=prompts))
    return parse_generated_content(raw, category)


# -----------------------------------------------------------------------------
# AI edit


def parse_ai_edit(raw: str, current_content: str) -> Outcome[AIEditResult]:
    try:
        data = extract_json(raw)
    except ValueError as e:
        logger.warning("[ai-edit-content] echoing current content: %s", e)
        return Fallback(
            AIEditResult(
                improved_content=current_content,
                research_findings="Unable to parse structured response from AI edit request",
                placeholders_used=[],
            ),
            reason=str(e),
        )

    findings = data.get("researchFindings")
    if isinstance(findings, list):
        findings = " | ".join(str(f).strip() for f in findings if str(f).strip())
    return Parsed(
        AIEditResult(
            improved_content=str(data.get("improvedContent") or "").strip() or current_content,
            research_findings=str(findings or "").strip(),
            placeholders_used=_string_list(data.get("placeholdersUsed")),
        )
    )


def ai_edit_content(
    gateway: LLMGateway,
    section: Section,
    current_content: str,
    feedback: List[str],
    use_case_name: str,
    use_case_category: str,
    *,
    prompts: Optional[PromptRepository] = None,
) -> Outcome[AIEditResult]:
    if section not in SECTIONS:
        raise ValueError(f"Unknown section: {section}")
    current = _require(current_content, "Current content and feedback are required for AI editing")
    notes = [f for f in (feedback or []) if f and f.strip()]
    if not notes:
        raise ValueError("Current content and feedback are required for AI editing")
    raw = _call(
        gateway,
        ai_edit_prompt(section, current, notes, use_case_name, use_case_category, repo=prompts),
    )
    return parse_ai_edit(raw, current)


def apply_ai_edit(content: GeneratedContent, section: Section, result: AIEditResult) -> GeneratedContent:
    """An accepted AI edit replaces the section text and counts as full confidence."""
    return content.with_section(section, result.improved_content, confidence=1.0)


# -----------------------------------------------------------------------------
# Story generation


def placeholder_story() -> StoryContent:
    return StoryContent(
        summary="Unable to generate story summary from provided content.",
        detailed_story=(
            "Unable to generate detailed story from provided content. "
            "Please check the use case data and try again."
        ),
    )


def parse_story(raw: str) -> Optional[StoryContent]:
    try:
        data = extract_json(raw, greedy=True)
    except ValueError:
        return None
    summary = str(data.get("summary") or "").strip()
    detailed = str(data.get("detailedStory") or "").strip()
    if not summary or not detailed:
        return None
    return StoryContent(summary=summary, detailed_story=detailed)


def build_story_input(
    use_case_name: str,
    use_case_category: str,
    content: GeneratedContent,
    customer: Optional[CustomerProfile],
) -> StoryInput:
    return StoryInput(
        use_case_name=use_case_name,
        use_case_category=use_case_category,
        problem_statement=content.problem_statement,
        databricks_solution=content.databricks_solution,
        impact=content.impact,
        customer_info=customer,
    )


def generate_story(
    gateway: LLMGateway,
    story_input: StoryInput,
    *,
    prompts: Optional[PromptRepository] = None,
    max_attempts: int = STORY_MAX_ATTEMPTS,
) -> Outcome[StoryContent]:
    """Summary + narrative for one use case; retried once before giving up."""
    if not story_input.is_active():
        raise ValueError("All use case data fields are required for story generation")

    request = story_prompt(story_input, repo=prompts)
    last_error: Optional[LLMGatewayError] = None
    reason = ""
    for attempt in range(1, max_attempts + 1):
        try:
            raw = _call(gateway, request)
        except LLMGatewayError as e:
            logger.warning("[generate-story] attempt %d/%d failed for %s: %s", attempt, max_attempts, story_input.key, e)
            last_error = e
            continue
        last_error = None
        story = parse_story(raw)
        if story is not None:
            return Parsed(story)
        reason = "Incomplete story generation response received"
        logger.warning("[generate-story] attempt %d/%d unparseable for %s", attempt, max_attempts, story_input.key)

    if last_error is not None:
        raise last_error
    return Fallback(placeholder_story(), reason=reason)

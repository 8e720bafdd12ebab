from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


ConfidenceLabel = Literal["high", "medium", "low"]
UseCaseCategory = Literal["Platform Use Case", "Business Use Case"]
Section = Literal["problem", "solution", "impact"]

SECTIONS: List[Section] = ["problem", "solution", "impact"]

IMPACT_SEPARATOR = "||"


def make_use_case_key(name: str, category: str) -> str:
    return f"{name}-{category}"


def split_impact(text: Optional[str]) -> List[str]:
    """Split an impact blob on `||` into trimmed, non-empty statements."""
    if not text:
        return []
    return [part.strip() for part in text.split(IMPACT_SEPARATOR) if part.strip()]


def join_impact(statements: List[str]) -> str:
    return IMPACT_SEPARATOR.join(s.strip() for s in statements if s and s.strip())


class WireModel(BaseModel):
    """Base for models exchanged with the browser / LLM in camelCase."""

    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict:
        return self.model_dump(by_alias=True)


class CustomerContext(WireModel):
    """Customer fields a story needs; any of them may be missing."""

    company_name: Optional[str] = Field(default=None, alias="companyName")
    region: Optional[str] = None
    industry: Optional[str] = None


class CustomerProfile(CustomerContext):
    company_name: str = Field(..., alias="companyName")
    region: str
    industry: str
    confidence: ConfidenceLabel = "low"
    additional_info: str = Field(default="", alias="additionalInfo")
    suggestions: Optional[str] = None


class IdentifiedUseCase(WireModel):
    category: UseCaseCategory
    name: str
    description: str
    confidence: ConfidenceLabel = "high"

    @property
    def key(self) -> str:
        return make_use_case_key(self.name, self.category)

    @property
    def is_platform(self) -> bool:
        return "platform" in self.category.lower()


class UseCaseAnalysis(WireModel):
    identified_use_cases: List[IdentifiedUseCase] = Field(default_factory=list, alias="identifiedUseCases")
    summary: str = ""


class FilteredContent(BaseModel):
    """Notes narrowed down to a single use case; the only valid input to generation."""

    use_case_name: str
    text: str
    found: bool = True


_SECTION_TEXT_FIELD: Dict[str, str] = {
    "problem": "problem_statement",
    "solution": "databricks_solution",
    "impact": "impact",
}


class GeneratedContent(WireModel):
    problem_statement: str = Field(..., alias="problemStatement")
    databricks_solution: str = Field(..., alias="databricksSolution")
    impact: str = Field(..., description="Two statements joined by `||`.")

    problem_confidence: float = Field(default=0.5, ge=0.0, le=1.0, alias="problemConfidence")
    solution_confidence: float = Field(default=0.5, ge=0.0, le=1.0, alias="solutionConfidence")
    impact_confidence: float = Field(default=0.5, ge=0.0, le=1.0, alias="impactConfidence")

    problem_suggestions: List[str] = Field(default_factory=list, alias="problemSuggestions")
    solution_suggestions: List[str] = Field(default_factory=list, alias="solutionSuggestions")
    impact_suggestions: List[str] = Field(default_factory=list, alias="impactSuggestions")

    def text_for(self, section: Section) -> str:
        return getattr(self, _SECTION_TEXT_FIELD[section])

    def confidence_for(self, section: Section) -> float:
        return getattr(self, f"{section}_confidence")

    def suggestions_for(self, section: Section) -> List[str]:
        return list(getattr(self, f"{section}_suggestions"))

    def all_suggestions(self) -> List[str]:
        out: List[str] = []
        for section in SECTIONS:
            out.extend(s for s in self.suggestions_for(section) if s and s.strip())
        return out

    def with_section(self, section: Section, text: str, confidence: Optional[float] = None) -> "GeneratedContent":
        update: Dict[str, object] = {_SECTION_TEXT_FIELD[section]: text}
        if confidence is not None:
            update[f"{section}_confidence"] = confidence
        return self.model_copy(update=update)


class AIEditResult(WireModel):
    improved_content: str = Field(..., alias="improvedContent")
    research_findings: str = Field(default="", alias="researchFindings")
    placeholders_used: List[str] = Field(default_factory=list, alias="placeholdersUsed")


class StoryContent(WireModel):
    summary: str
    detailed_story: str = Field(..., alias="detailedStory")


class StoryInput(WireModel):
    use_case_name: str = Field(..., alias="useCaseName")
    use_case_category: str = Field(default="", alias="useCaseCategory")
    problem_statement: str = Field(default="", alias="problemStatement")
    databricks_solution: str = Field(default="", alias="databricksSolution")
    impact: str = ""
    customer_info: Optional[CustomerContext] = Field(default=None, alias="customerInfo")

    @property
    def key(self) -> str:
        return make_use_case_key(self.use_case_name, self.use_case_category)

    def is_active(self) -> bool:
        return all(
            (v or "").strip()
            for v in (self.use_case_name, self.problem_statement, self.databricks_solution, self.impact)
        )


class StoryResult(WireModel):
    use_case_key: str = Field(..., alias="useCaseKey")
    story_content: Optional[StoryContent] = Field(default=None, alias="storyContent")


class ExportRecord(WireModel):
    """One row of the document-generation script's input."""

    customer_name: str = Field(..., alias="customerName")
    description: str
    databricks_role: str = Field(default="", alias="databricksRole")
    challenge: str = ""
    solution: str = ""
    is1: str = ""
    is2: str = ""
    notes: str = ""
    story: str = ""
    sources: str = ""


class ExportResult(WireModel):
    success: bool
    total_exported: int = Field(..., alias="totalExported")
    url: Optional[str] = None

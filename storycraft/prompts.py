from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from string import Template
from typing import Any, Dict, List, Optional, Protocol

import yaml

from storycraft.schemas.models import Section, StoryInput


DEFAULT_PROMPTS_PATH = Path(__file__).resolve().parent / "data" / "prompts.yaml"

NO_CONTENT_MARKER = "No specific content found for this use case."


@dataclass(frozen=True)
class PromptTemplate:
    name: str
    template: str
    temperature: float = 0.2
    max_tokens: int = 1000
    sections: Dict[str, str] = field(default_factory=dict)

    def render(self, **values: Any) -> str:
        return Template(self.template).substitute(**values)


@dataclass(frozen=True)
class PromptRequest:
    """A rendered prompt plus the gateway options for that step."""

    name: str
    text: str
    temperature: float
    max_tokens: int


class PromptRepository(Protocol):
    def get(self, name: str) -> PromptTemplate:
        ...


class YamlPromptRepository:
    def __init__(self, path: str | Path = DEFAULT_PROMPTS_PATH):
        self.path = Path(path)
        self._templates: Optional[Dict[str, PromptTemplate]] = None

    def _load(self) -> Dict[str, PromptTemplate]:
        data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        templates: Dict[str, PromptTemplate] = {}
        for name, raw in (data.get("prompts") or {}).items():
            templates[name] = PromptTemplate(
                name=name,
                template=str(raw.get("template", "")),
                temperature=float(raw.get("temperature", 0.2)),
                max_tokens=int(raw.get("max_tokens", 1000)),
                sections={k: str(v) for k, v in (raw.get("sections") or {}).items()},
            )
        return templates

    def get(self, name: str) -> PromptTemplate:
        if self._templates is None:
            self._templates = self._load()
        try:
            return self._templates[name]
        except KeyError:
            raise KeyError(f"Unknown prompt template: {name} ({self.path})") from None


@lru_cache(maxsize=1)
def default_prompts() -> YamlPromptRepository:
    return YamlPromptRepository()


def _request(repo: Optional[PromptRepository], name: str, **values: Any) -> PromptRequest:
    tpl = (repo or default_prompts()).get(name)
    return PromptRequest(
        name=name,
        text=tpl.render(**values),
        temperature=tpl.temperature,
        max_tokens=tpl.max_tokens,
    )


def customer_validation_prompt(customer_details: str, *, repo: Optional[PromptRepository] = None) -> PromptRequest:
    return _request(repo, "validate_customer", customer_details=customer_details.strip())


def use_case_analysis_prompt(
    customer_content: str,
    industry: Optional[str],
    *,
    repo: Optional[PromptRepository] = None,
) -> PromptRequest:
    return _request(
        repo,
        "analyze_use_cases",
        customer_content=customer_content.strip(),
        industry=(industry or "").strip() or "relevant",
    )


def filter_content_prompt(
    use_case_name: str,
    customer_notes: str,
    *,
    repo: Optional[PromptRepository] = None,
) -> PromptRequest:
    return _request(
        repo,
        "filter_content",
        use_case_name=use_case_name.strip(),
        customer_notes=customer_notes.strip(),
        no_content_marker=NO_CONTENT_MARKER,
    )


def generate_content_prompt(
    use_case_name: str,
    use_case_category: str,
    filtered_content: str,
    *,
    repo: Optional[PromptRepository] = None,
) -> PromptRequest:
    return _request(
        repo,
        "generate_content",
        use_case_name=use_case_name.strip(),
        use_case_category=use_case_category.strip(),
        filtered_content=filtered_content.strip(),
    )


def ai_edit_prompt(
    section: Section,
    current_content: str,
    feedback: List[str],
    use_case_name: str,
    use_case_category: str,
    *,
    repo: Optional[PromptRepository] = None,
) -> PromptRequest:
    tpl = (repo or default_prompts()).get("ai_edit_content")
    if section not in tpl.sections:
        raise ValueError(f"Unknown section: {section}")
    # Section instructions are themselves templates (they carry escaped `$$`).
    instructions = Template(tpl.sections[section]).substitute()
    return PromptRequest(
        name=tpl.name,
        text=tpl.render(
            section_instructions=instructions.strip(),
            section=section,
            current_content=current_content.strip(),
            feedback="; ".join(f.strip() for f in feedback if f and f.strip()),
            use_case_name=use_case_name.strip(),
            use_case_category=use_case_category.strip(),
        ),
        temperature=tpl.temperature,
        max_tokens=tpl.max_tokens,
    )


def story_prompt(story_input: StoryInput, *, repo: Optional[PromptRepository] = None) -> PromptRequest:
    customer = story_input.customer_info
    return _request(
        repo,
        "generate_story",
        company_name=(customer.company_name if customer else "") or "Customer",
        industry=(customer.industry if customer else "") or "Technology",
        region=(customer.region if customer else "") or "Global",
        use_case_name=story_input.use_case_name,
        use_case_category=story_input.use_case_category,
        problem_statement=story_input.problem_statement,
        databricks_solution=story_input.databricks_solution,
        impact=story_input.impact,
    )

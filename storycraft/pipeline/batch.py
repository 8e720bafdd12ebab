"""Concurrent fan-out over selected use cases.

Both runners settle every item: one use case failing never cancels or hides
the results of the others.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from storycraft.pipeline.graph import build_use_case_graph
from storycraft.pipeline.outcomes import Outcome, StageError, StageOk, StageResult
from storycraft.pipeline.steps import generate_story
from storycraft.prompts import PromptRepository
from storycraft.schemas.models import GeneratedContent, IdentifiedUseCase, StoryContent, StoryInput, StoryResult
from storycraft.tools.llm import LLMGateway

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


@dataclass(frozen=True)
class UseCaseRun:
    use_case: IdentifiedUseCase
    result: StageResult[Outcome[GeneratedContent]]

    @property
    def key(self) -> str:
        return self.use_case.key


def process_use_case(graph: Any, use_case: IdentifiedUseCase, customer_notes: str) -> StageResult[Outcome[GeneratedContent]]:
    final = graph.invoke({"use_case": use_case, "customer_notes": customer_notes})
    error: Optional[StageError] = final.get("error")
    if error is not None:
        return error
    outcome = final.get("outcome")
    if outcome is None:
        return StageError(stage="generate", message="Content generation produced no result")
    return StageOk(outcome)


def process_use_cases(
    gateway: LLMGateway,
    use_cases: Sequence[IdentifiedUseCase],
    customer_notes: str,
    *,
    prompts: Optional[PromptRepository] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> List[UseCaseRun]:
    """Filter then generate for every use case; results keep input order."""
    if not use_cases:
        return []
    graph = build_use_case_graph(gateway, prompts=prompts)

    results: Dict[int, StageResult[Outcome[GeneratedContent]]] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(use_cases)))) as pool:
        futures = {
            pool.submit(process_use_case, graph, uc, customer_notes): i for i, uc in enumerate(use_cases)
        }
        for future in as_completed(futures):
            i = futures[future]
            try:
                results[i] = future.result()
            except Exception as e:
                logger.error("[process-use-case] %s failed: %s", use_cases[i].key, e)
                results[i] = StageError(stage="pipeline", message=str(e))

    runs = [UseCaseRun(use_case=uc, result=results[i]) for i, uc in enumerate(use_cases)]
    failed = sum(1 for r in runs if isinstance(r.result, StageError))
    logger.info("Processed %d use cases (%d failed)", len(runs), failed)
    return runs


def _failed_story(name: str, error: Exception) -> StoryContent:
    return StoryContent(
        summary=f"Story generation failed for {name}",
        detailed_story=f"Unable to generate detailed story for {name}. Error: {error}",
    )


def generate_all_stories(
    gateway: LLMGateway,
    story_inputs: Sequence[StoryInput],
    *,
    prompts: Optional[PromptRepository] = None,
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> List[StoryResult]:
    """One story per active use case, in input order; failures become error stories."""
    if not story_inputs:
        raise ValueError("Use cases are required for story generation")
    active = [s for s in story_inputs if s.is_active()]
    if not active:
        raise ValueError("No active use cases found for story generation")

    stories: Dict[int, StoryContent] = {}
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(active)))) as pool:
        futures = {pool.submit(generate_story, gateway, s, prompts=prompts): i for i, s in enumerate(active)}
        for future in as_completed(futures):
            i = futures[future]
            try:
                stories[i] = future.result().value
            except Exception as e:
                logger.error("[generate-story] %s failed: %s", active[i].key, e)
                stories[i] = _failed_story(active[i].use_case_name, e)

    return [StoryResult(use_case_key=s.key, story_content=stories[i]) for i, s in enumerate(active)]

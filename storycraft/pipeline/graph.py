from __future__ import annotations

from typing import Any, Dict, Literal, Optional

from langgraph.graph import END, START, StateGraph

from storycraft.pipeline.outcomes import StageError
from storycraft.pipeline.steps import filter_content, generate_content
from storycraft.prompts import PromptRepository
from storycraft.state.models import UseCaseRunState
from storycraft.tools.llm import LLMGateway, LLMGatewayError


def make_filter_node(gateway: LLMGateway, prompts: Optional[PromptRepository] = None):
    def filter_node(state: UseCaseRunState) -> Dict[str, Any]:
        use_case = state["use_case"]
        try:
            filtered = filter_content(gateway, use_case.name, state.get("customer_notes", ""), prompts=prompts)
        except (LLMGatewayError, ValueError) as e:
            return {"error": StageError(stage="filter", message=f"Content filtering failed: {e}")}
        return {"filtered": filtered}

    return filter_node


def make_generate_node(gateway: LLMGateway, prompts: Optional[PromptRepository] = None):
    def generate_node(state: UseCaseRunState) -> Dict[str, Any]:
        use_case = state["use_case"]
        try:
            outcome = generate_content(
                gateway,
                use_case.name,
                use_case.category,
                state["filtered"],
                prompts=prompts,
            )
        except (LLMGatewayError, ValueError) as e:
            return {"error": StageError(stage="generate", message=f"Content generation failed: {e}")}
        return {"outcome": outcome}

    return generate_node


def _after_filter(state: UseCaseRunState) -> Literal["generate", "end"]:
    return "end" if state.get("error") else "generate"


def build_use_case_graph(gateway: LLMGateway, *, prompts: Optional[PromptRepository] = None):
    """filter -> generate. Generation only ever sees the filter node's output."""
    builder = StateGraph(UseCaseRunState)

    builder.add_node("filter", make_filter_node(gateway, prompts))
    builder.add_node("generate", make_generate_node(gateway, prompts))

    builder.add_edge(START, "filter")
    builder.add_conditional_edges("filter", _after_filter, {"generate": "generate", "end": END})
    builder.add_edge("generate", END)

    return builder.compile()

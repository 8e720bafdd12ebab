from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from starlette.concurrency import run_in_threadpool

from storycraft.config import Settings
from storycraft.prompts import (
    PromptRequest,
    ai_edit_prompt,
    customer_validation_prompt,
    filter_content_prompt,
    generate_content_prompt,
    story_prompt,
    use_case_analysis_prompt,
)
from storycraft.schemas.models import SECTIONS, StoryInput, StoryResult
from storycraft.tools.export import DocumentExporter, ExportError, format_story_records, forward_value_story
from storycraft.tools.llm import LLMGateway, LLMGatewayError, build_gateway

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger("storycraft.api")

app = FastAPI(title="Customer Story Wizard API")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()


def get_gateway(settings: Settings = Depends(get_settings)) -> LLMGateway:
    return build_gateway(settings)


def get_exporter(settings: Settings = Depends(get_settings)) -> DocumentExporter:
    return DocumentExporter(settings.export_url, timeout=settings.http_timeout)


class _Body(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ValidateCustomerBody(_Body):
    customer_details: Optional[str] = Field(default=None, alias="customerDetails")


class AnalyzeUseCasesBody(_Body):
    customer_content: Optional[str] = Field(default=None, alias="customerContent")
    industry: Optional[str] = None


class FilterContentBody(_Body):
    use_case_name: Optional[str] = Field(default=None, alias="useCaseName")
    customer_notes: Optional[str] = Field(default=None, alias="customerNotes")


class GenerateContentBody(_Body):
    use_case_name: Optional[str] = Field(default=None, alias="useCaseName")
    use_case_category: Optional[str] = Field(default=None, alias="useCaseCategory")
    filtered_content: Optional[str] = Field(default=None, alias="filteredContent")


class AIEditBody(_Body):
    section: Optional[str] = None
    current_content: Optional[str] = Field(default=None, alias="currentContent")
    feedback: Optional[List[str]] = None
    use_case_name: Optional[str] = Field(default="", alias="useCaseName")
    use_case_category: Optional[str] = Field(default="", alias="useCaseCategory")


class GenerateStoryBody(_Body):
    use_case_data: Optional[Dict[str, Any]] = Field(default=None, alias="useCaseData")


class ExportStoriesBody(_Body):
    story_generation_results: Optional[List[Dict[str, Any]]] = Field(default=None, alias="storyGenerationResults")
    customer_info: Optional[Dict[str, Any]] = Field(default=None, alias="customerInfo")
    use_case_contents: Dict[str, Dict[str, Any]] = Field(default_factory=dict, alias="useCaseContents")
    ai_research_findings: Dict[str, List[str]] = Field(default_factory=dict, alias="aiResearchFindings")


def _blank(*values: Optional[str]) -> bool:
    return any(not (v or "").strip() for v in values)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": message})


def _complete(tag: str, gateway: LLMGateway, request: PromptRequest) -> Any:
    try:
        text = gateway.call(request.text, temperature=request.temperature, max_tokens=request.max_tokens)
    except (LLMGatewayError, ValueError) as e:
        logger.error("[%s] %s", tag, e)
        return JSONResponse(status_code=500, content={"error": str(e)})
    return {"response": text}


@app.get("/health")
def health(settings: Settings = Depends(get_settings)):
    return {"status": "ok", "provider": settings.llm_provider}


@app.post("/api/validate-customer")
def validate_customer(body: ValidateCustomerBody, gateway: LLMGateway = Depends(get_gateway)):
    if _blank(body.customer_details):
        return _bad_request("Customer details are required")
    return _complete("validate-customer", gateway, customer_validation_prompt(body.customer_details.strip()))


@app.post("/api/analyze-use-cases")
def analyze_use_cases(body: AnalyzeUseCasesBody, gateway: LLMGateway = Depends(get_gateway)):
    if _blank(body.customer_content):
        return _bad_request("Customer content is required")
    return _complete(
        "analyze-use-cases",
        gateway,
        use_case_analysis_prompt(body.customer_content.strip(), body.industry),
    )


@app.post("/api/filter-content")
def filter_content(body: FilterContentBody, gateway: LLMGateway = Depends(get_gateway)):
    if _blank(body.use_case_name, body.customer_notes):
        return _bad_request("Use case name and customer notes are required")
    return _complete("filter-content", gateway, filter_content_prompt(body.use_case_name, body.customer_notes))


@app.post("/api/generate-content")
def generate_content(body: GenerateContentBody, gateway: LLMGateway = Depends(get_gateway)):
    if _blank(body.use_case_name, body.use_case_category, body.filtered_content):
        return _bad_request("Use case name, category, and filtered content are required")
    return _complete(
        "generate-content",
        gateway,
        generate_content_prompt(body.use_case_name, body.use_case_category, body.filtered_content),
    )


@app.post("/api/ai-edit-content")
def ai_edit_content(body: AIEditBody, gateway: LLMGateway = Depends(get_gateway)):
    feedback = [f for f in (body.feedback or []) if f and f.strip()]
    if _blank(body.current_content) or not feedback:
        return _bad_request("Current content and feedback are required for AI editing")
    if body.section not in SECTIONS:
        return _bad_request(f"Section must be one of: {', '.join(SECTIONS)}")
    return _complete(
        "ai-edit-content",
        gateway,
        ai_edit_prompt(
            body.section,  # type: ignore[arg-type]
            body.current_content,
            feedback,
            body.use_case_name or "",
            body.use_case_category or "",
        ),
    )


@app.post("/api/generate-story")
def generate_story(body: GenerateStoryBody, gateway: LLMGateway = Depends(get_gateway)):
    if not body.use_case_data:
        return _bad_request("Use case data is required")
    try:
        story_input = StoryInput.model_validate(body.use_case_data)
    except ValidationError as e:
        return _bad_request(f"Invalid use case data: {e.errors()[0].get('msg', 'validation error')}")
    if not story_input.is_active():
        return _bad_request("All use case data fields are required for story generation")
    return _complete("generate-story", gateway, story_prompt(story_input))


@app.post("/api/export-stories")
def export_stories(body: ExportStoriesBody, exporter: DocumentExporter = Depends(get_exporter)):
    if not body.story_generation_results:
        return JSONResponse(status_code=400, content={"success": False, "error": "Story generation results are required"})
    try:
        results = [StoryResult.model_validate(r) for r in body.story_generation_results]
    except ValidationError as e:
        return JSONResponse(status_code=400, content={"success": False, "error": f"Invalid export data: {e}"})

    try:
        records = format_story_records(results, body.customer_info, body.use_case_contents, body.ai_research_findings)
        result = exporter.export(records)
    except (ExportError, ValueError) as e:
        logger.error("[export-stories] %s", e)
        return JSONResponse(status_code=500, content={"success": False, "error": str(e)})

    return {
        "success": True,
        "message": f"Successfully exported {result.total_exported} customer stories",
        "exportResult": result.to_wire(),
    }


@app.post("/api/value-story")
async def value_story(request: Request, settings: Settings = Depends(get_settings)):
    try:
        payload = await request.json()
    except ValueError:
        return _bad_request("Request body must be a JSON object")
    if not isinstance(payload, dict):
        return _bad_request("Request body must be a JSON object")
    try:
        return await run_in_threadpool(
            forward_value_story, settings.value_story_url, payload, timeout=settings.http_timeout
        )
    except Exception as e:
        logger.error("[value-story] %s", e)
        return JSONResponse(status_code=500, content={"status": "error", "message": str(e)})


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=get_settings().port)

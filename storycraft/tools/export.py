"""Flatten finished stories into document-script records and send them."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

import httpx

from storycraft.schemas.models import (
    CustomerProfile,
    ExportRecord,
    ExportResult,
    GeneratedContent,
    StoryResult,
    split_impact,
)

logger = logging.getLogger(__name__)

NO_RECOMMENDATIONS = "No specific AI recommendations provided."
NO_SOURCES = "No additional research sources used."


class ExportError(RuntimeError):
    pass


class ExportConfigurationError(ExportError):
    pass


ContentLike = Union[GeneratedContent, Mapping[str, Any]]


def _content_dict(content: Optional[ContentLike]) -> Dict[str, Any]:
    if content is None:
        return {}
    if isinstance(content, GeneratedContent):
        return content.to_wire()
    return dict(content)


def use_case_name_from_key(key: str) -> str:
    """Keys are `<name>-<category>`; names may contain dashes, categories do not."""
    name, sep, _ = (key or "").rpartition("-")
    return name if sep and name else "Unknown Use Case"


def _customer_name(customer: Union[CustomerProfile, Mapping[str, Any], None]) -> str:
    if isinstance(customer, CustomerProfile):
        return customer.company_name or "Unknown Customer"
    if customer:
        return str(customer.get("companyName") or customer.get("company_name") or "") or "Unknown Customer"
    return "Unknown Customer"


def format_story_records(
    story_results: Sequence[StoryResult],
    customer: Union[CustomerProfile, Mapping[str, Any], None],
    use_case_contents: Mapping[str, ContentLike],
    research_findings: Optional[Mapping[str, Sequence[str]]] = None,
) -> List[ExportRecord]:
    """One export record per story; missing content for a key yields empty fields."""
    if not story_results:
        raise ValueError("Story generation results are required")
    research_findings = research_findings or {}

    records: List[ExportRecord] = []
    for result in story_results:
        key = result.use_case_key
        content = _content_dict(use_case_contents.get(key))
        findings = [str(f).strip() for f in (research_findings.get(key) or []) if f and str(f).strip()]

        impact = split_impact(content.get("impact"))

        suggestions: List[str] = []
        for field in ("problemSuggestions", "solutionSuggestions", "impactSuggestions"):
            suggestions.extend(str(s).strip() for s in (content.get(field) or []) if s and str(s).strip())

        notes = f"AI Recommendations: {'; '.join(suggestions)}" if suggestions else NO_RECOMMENDATIONS
        sources = "; ".join(findings) if findings else NO_SOURCES
        story = result.story_content

        records.append(
            ExportRecord(
                customer_name=_customer_name(customer),
                description=use_case_name_from_key(key),
                databricks_role=story.summary if story else "",
                challenge=str(content.get("problemStatement") or ""),
                solution=str(content.get("databricksSolution") or ""),
                is1=impact[0] if len(impact) > 0 else "",
                is2=impact[1] if len(impact) > 1 else "",
                notes=notes,
                story=story.detailed_story if story else "",
                sources=sources,
            )
        )
    return records


class DocumentExporter:
    """POSTs export records to the document-generation script as one form field."""

    def __init__(self, url: str, *, timeout: float = 120.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self._client = client

    def _post(self, form: Dict[str, str]) -> httpx.Response:
        # Apps Script answers POSTs with a redirect to the result document.
        if self._client is not None:
            return self._client.post(self.url, data=form, follow_redirects=True)
        with httpx.Client(timeout=self.timeout, follow_redirects=True) as s:
            return s.post(self.url, data=form)

    def export(self, records: Sequence[ExportRecord]) -> ExportResult:
        if not self.url:
            raise ExportConfigurationError("Document export URL not configured")
        if not records:
            raise ValueError("Story data is required and must be a non-empty array")

        logger.info(
            "Exporting story data: %s",
            {"totalUseCases": len(records), "useCases": [r.description for r in records]},
        )
        payload = json.dumps([r.to_wire() for r in records])

        try:
            response = self._post({"data": payload})
        except httpx.RequestError as e:
            raise ExportError(f"Document export failed: {e}") from e

        body = response.text
        if not response.is_success:
            raise ExportError(f"HTTP {response.status_code}: {response.reason_phrase}. Response: {body}")

        try:
            result = json.loads(body)
        except ValueError:
            raise ExportError(f"Invalid (non-JSON) response from document service: {body}") from None

        if not isinstance(result, dict) or result.get("status") != "success":
            message = result.get("message") if isinstance(result, dict) else None
            raise ExportError(message or "Unknown error occurred")

        logger.info("Export successful: document created at %s", result.get("url"))
        return ExportResult(success=True, total_exported=len(records), url=result.get("url"))


def forward_value_story(
    url: str,
    payload: Mapping[str, Any],
    *,
    timeout: float = 120.0,
    client: Optional[httpx.Client] = None,
) -> Dict[str, Any]:
    """Legacy passthrough: re-encode a JSON body as a form and relay the script's reply."""
    if not url:
        raise ExportConfigurationError("Value story script URL not configured")

    form = {str(k): "" if v is None else str(v) for k, v in payload.items()}
    if client is not None:
        response = client.post(url, data=form, follow_redirects=True)
    else:
        with httpx.Client(timeout=timeout, follow_redirects=True) as s:
            response = s.post(url, data=form)

    raw = response.text
    logger.info("Value story script status %s: %s", response.status_code, raw[:200])
    try:
        return json.loads(raw)
    except ValueError:
        return {"status": "error", "message": "Non-JSON response", "raw": raw}

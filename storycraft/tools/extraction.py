from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict

from json_repair import repair_json

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.I)
# Non-greedy: the first closing brace ends the match, so only the first object is used.
_OBJECT_RE = re.compile(r"\{[\s\S]*?\}")
# Greedy: first `{` to last `}`, for responses whose object nests other objects.
_OUTER_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


class JSONExtractionError(ValueError):
    """Raised when no JSON object can be recovered from an LLM response."""


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def _repair_to_object(text: str) -> Dict[str, Any]:
    repaired = repair_json(text)
    data = json.loads(repaired) if isinstance(repaired, str) else repaired
    if not isinstance(data, dict):
        raise JSONExtractionError(f"Repaired JSON is not an object: {str(repaired)[:200]}")
    return data


def extract_json(text: str, *, greedy: bool = False) -> Dict[str, Any]:
    """Find and parse the first JSON object in freeform model output.

    Order: strict parse of the first `{...}` span, repair of that span, then
    repair of the whole fence-stripped text. No shape validation is done here.

    With ``greedy=True`` the span runs to the last closing brace, which keeps
    nested objects (lists of use cases) intact.
    """
    cleaned = strip_code_fences(text)

    pattern = _OUTER_OBJECT_RE if greedy else _OBJECT_RE
    match = pattern.search(cleaned)
    if not match:
        logger.error("No JSON found. Response (first 200 chars): %s", cleaned[:200])
        raise JSONExtractionError("No JSON found in response.")

    candidate = match.group(0)
    try:
        data = json.loads(candidate)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        logger.warning("JSON parsing failed. Attempting repair...")

    try:
        return _repair_to_object(candidate)
    except (ValueError, TypeError):
        logger.warning("Repair of matched JSON failed. Trying entire response...")

    try:
        return _repair_to_object(cleaned)
    except (ValueError, TypeError) as e:
        raise JSONExtractionError(f"Unable to repair JSON in response: {e}") from e

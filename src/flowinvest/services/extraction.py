"""
Pull a JSON payload out of raw model text.

Models wrap JSON in markdown fences or surround it with prose. Extraction only
cleans fencing and whitespace; it never repairs content.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any

from flowinvest.exceptions import ExtractionError

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)
_LEADING_ARRAY_OF_OBJECTS = re.compile(r"^\s*\[\s*\{")
_TRAILING_ARRAY_OF_OBJECTS = re.compile(r"\}\s*\]\s*$")


def fence_json(value: Any) -> str:
    """Render a value as a ```json fenced block."""
    return f"```json\n{json.dumps(value, indent=2)}\n```"


def _span(text: str, opener: str, closer: str) -> tuple[int, int] | None:
    start = text.find(opener)
    end = text.rfind(closer)
    if start == -1 or end <= start:
        return None
    return start, end


def _slice_payload(text: str) -> str:
    array_span = _span(text, "[", "]")
    object_span = _span(text, "{", "}")
    if array_span and (object_span is None or array_span[0] <= object_span[0]):
        return text[array_span[0] : array_span[1] + 1]
    if object_span:
        return text[object_span[0] : object_span[1] + 1]
    return text


def candidate_text(raw_text: str) -> str:
    """Return the cleaned substring that should hold the JSON payload."""
    match = _FENCED_BLOCK.search(raw_text)
    candidate = match.group(1) if match else _slice_payload(raw_text)
    candidate = candidate.replace("```", "")
    candidate = _LEADING_ARRAY_OF_OBJECTS.sub("[{", candidate)
    candidate = _TRAILING_ARRAY_OF_OBJECTS.sub("}]", candidate)
    return candidate.strip()


def extract_json(raw_text: str | None) -> Any:
    """
    Parse the JSON value embedded in ``raw_text``.

    Raises:
        ExtractionError: when the cleaned candidate is not valid JSON.
    """
    if not raw_text or not raw_text.strip():
        raise ExtractionError("Empty response from AI model", raw_text=raw_text or "")

    candidate = candidate_text(raw_text)
    try:
        return json.loads(candidate)
    except ValueError as exc:  # JSONDecodeError, or an integer past the digit limit
        logger.warning("Failed to parse model output as JSON (%s): %.200s", exc, raw_text)
        raise ExtractionError("Failed to parse AI response", raw_text=raw_text, details=str(exc)) from exc

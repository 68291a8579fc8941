"""Extraction of structured triage results from free-text model output."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from mailtriage.errors import ParseError
from mailtriage.models import Action, Category, TriageResult

logger = logging.getLogger(__name__)

DEFAULT_SUMMARY = "No summary generated."
FALLBACK_SUMMARY_PREFIX = "Failed to process AI response: "
FALLBACK_PREVIEW_CHARS = 100

# Opening fence with optional language tag, or a bare closing fence
_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*")


@dataclass
class Extraction:
    """Result of parsing a completion.

    ``ok`` is True when the completion decoded to a JSON object; otherwise
    ``result`` holds the Review-flagged fallback and ``error`` the reason.
    """

    ok: bool
    result: TriageResult
    raw_response: str
    error: str | None = None


def extract(raw_text: str, message_id: str) -> Extraction:
    """Parse a completion into a triage result. Never raises."""
    if not isinstance(raw_text, str):
        raw_text = "" if raw_text is None else str(raw_text)
    try:
        data = _decode(raw_text)
        result = _build_result(data, message_id)
    except (ParseError, ValidationError) as e:
        logger.warning(f"Failed to parse JSON from AI response for {message_id}: {e}")
        return Extraction(
            ok=False,
            result=_fallback(raw_text, message_id),
            raw_response=raw_text,
            error=str(e),
        )

    return Extraction(
        ok=True,
        result=result,
        raw_response=raw_text,
    )


def extract_result(raw_text: str, message_id: str) -> TriageResult:
    """Shortcut for ``extract(...).result``."""
    return extract(raw_text, message_id).result


def clean_json_response(response: str) -> str:
    """Remove markdown fences and slice to the outermost braces."""
    cleaned = _FENCE_RE.sub("", response).strip()
    first = cleaned.find("{")
    last = cleaned.rfind("}")
    if first != -1 and last != -1:
        cleaned = cleaned[first : last + 1]
    return cleaned


def _decode(raw_text: str) -> dict[str, Any]:
    cleaned = clean_json_response(raw_text)
    try:
        data = json.loads(cleaned)
    except (ValueError, RecursionError) as e:
        raise ParseError(f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ParseError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def _build_result(data: dict[str, Any], message_id: str) -> TriageResult:
    summary = data.get("summary")
    suggested = data.get("suggestedResponse")
    return TriageResult(
        message_id=message_id,
        category=Category.coerce(data.get("category")),
        summary=str(summary) if summary else DEFAULT_SUMMARY,
        suggested_response=str(suggested) if suggested else None,
        action=Action.coerce(data.get("action")),
    )


def _fallback(raw_text: str, message_id: str) -> TriageResult:
    return TriageResult(
        message_id=message_id,
        category=Category.REVIEW,
        summary=FALLBACK_SUMMARY_PREFIX + _preview(raw_text),
        suggested_response=None,
        action=Action.REVIEW,
    )


def _preview(raw_text: str) -> str:
    # Lone surrogates are not valid in a result string
    preview = raw_text[:FALLBACK_PREVIEW_CHARS]
    return preview.encode("utf-8", "replace").decode("utf-8")

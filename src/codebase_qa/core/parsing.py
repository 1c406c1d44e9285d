"""Helpers that coerce free-text model output into an answer payload."""

import json
import re
from enum import Enum
from typing import Any

from loguru import logger

from codebase_qa.core.models import Answer, Chunk, Reference

# Greedy: spans from the first "{" to the last "}" without tracking nesting.
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class ParseStrategy(str, Enum):
    DIRECT = "direct"
    EXTRACTED = "extracted"


def try_parse_answer(text: str) -> dict[str, Any] | None:
    """Returns the decoded object if it has a string `answer` and a `references` key."""
    try:
        obj = json.loads(text)
    except (TypeError, ValueError):
        return None
    if isinstance(obj, dict) and isinstance(obj.get("answer"), str) and "references" in obj:
        return obj
    return None


def extract_json_object(text: str) -> str | None:
    match = _JSON_OBJECT.search(text or "")
    return match.group(0) if match else None


def parse_model_output(text: str) -> tuple[dict[str, Any] | None, ParseStrategy | None]:
    """Applies the direct parse, then the embedded-object extraction."""
    payload = try_parse_answer(text)
    if payload is not None:
        return payload, ParseStrategy.DIRECT

    embedded = extract_json_object(text)
    if embedded is not None:
        payload = try_parse_answer(embedded)
        if payload is not None:
            return payload, ParseStrategy.EXTRACTED

    return None, None


def _as_line(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def coerce_references(raw: Any) -> list[Reference]:
    """Converts model-provided references into `Reference` objects.

    Accepts both the prompt shape (`start_line`/`end_line`/`reason`) and the
    stored shape (`lines`/`explanation`). Structurally invalid items are dropped.
    """
    if not isinstance(raw, list):
        return []

    references: list[Reference] = []
    for item in raw:
        if not isinstance(item, dict) or not isinstance(item.get("file"), str):
            continue

        lines = item.get("lines")
        if isinstance(lines, (list, tuple)) and len(lines) == 2:
            start, end = _as_line(lines[0]), _as_line(lines[1])
        else:
            start = _as_line(item.get("start_line"))
            end = _as_line(item.get("end_line", item.get("start_line")))

        if start is None or end is None or end < start:
            continue

        explanation = item.get("reason", item.get("explanation", ""))
        references.append(
            Reference(
                file=item["file"],
                lines=(start, end),
                explanation=explanation if isinstance(explanation, str) else str(explanation),
            )
        )

    if len(references) != len(raw):
        logger.debug("Dropped {} malformed references", len(raw) - len(references))
    return references


def to_answer(payload: dict[str, Any]) -> Answer:
    return Answer(text=payload["answer"], references=coerce_references(payload["references"]))


def grounded_references(references: list[Reference], chunks: list[Chunk]) -> list[Reference]:
    """Keeps only references that overlap one of the given chunks."""
    return [ref for ref in references if any(ref.overlaps(chunk) for chunk in chunks)]

"""Two-stage parser for the vision model's free-text reply.

The model is asked to append ``LANGUAGE: xx`` and ``CONFIDENCE: nn`` lines.
That is a prompt convention, not a contract, so a missing marker falls back to
the heuristics in ``app.confidence.confidence``.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

from app.confidence.confidence import (
    DEFAULT_WEIGHTS,
    ConfidenceWeights,
    clamp_confidence,
    detect_language,
    estimate_confidence,
)

# Whole marker lines; the value is validated separately so a malformed value
# still gets its line removed.
_LANGUAGE_LINE = re.compile(r"^[ \t]*LANGUAGE:([^\r\n]*)(?:\r?\n)?", re.IGNORECASE | re.MULTILINE)
_CONFIDENCE_LINE = re.compile(r"^[ \t]*CONFIDENCE:([^\r\n]*)(?:\r?\n)?", re.IGNORECASE | re.MULTILINE)
_LANGUAGE_CODE = re.compile(r"([a-z]{2,3})(?![a-z])", re.IGNORECASE)
_CONFIDENCE_VALUE = re.compile(r"(\d+(?:\.\d+)?)")


@dataclass(frozen=True)
class ParsedResponse:
    extracted_text: str
    language: str
    confidence: float


def _take_last_marker(pattern: re.Pattern[str], text: str) -> tuple[str, str | None]:
    """Remove the last line matching *pattern*; return the text and the marker value."""
    last = None
    for last in pattern.finditer(text):
        pass
    if last is None:
        return text, None
    return text[: last.start()] + text[last.end():], last.group(1).strip()


def parse_extraction_response(
    raw_text: str,
    weights: ConfidenceWeights = DEFAULT_WEIGHTS,
) -> ParsedResponse:
    text = raw_text or ""
    language: str | None = None
    confidence: float | None = None

    text, language_value = _take_last_marker(_LANGUAGE_LINE, text)
    if language_value:
        code = _LANGUAGE_CODE.match(language_value)
        if code:
            language = code.group(1).lower()

    text, confidence_value = _take_last_marker(_CONFIDENCE_LINE, text)
    if confidence_value:
        value = _CONFIDENCE_VALUE.match(confidence_value)
        if value:
            confidence = clamp_confidence(float(value.group(1)))

    text = text.strip()

    if language is None:
        language = detect_language(text)
    if confidence is None:
        confidence = estimate_confidence(text, weights)

    return ParsedResponse(extracted_text=text, language=language, confidence=confidence)

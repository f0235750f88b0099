"""Heuristic language detection and confidence scoring.

Used when the vision model omits the LANGUAGE/CONFIDENCE markers. Both
heuristics are approximate: the point values below are defaults, carried in
``ConfidenceWeights`` so callers can tune them.
"""
from __future__ import annotations

import re
from dataclasses import dataclass

# Checked in order; the first script present decides the language.
SCRIPT_LANGUAGES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("zh", re.compile(r"[\u4e00-\u9fff]")),                # CJK ideographs
    ("ja", re.compile(r"[\u3040-\u309f\u30a0-\u30ff]")),   # Hiragana, Katakana
    ("ko", re.compile(r"[\uac00-\ud7a3]")),                # Hangul syllables
    ("ar", re.compile(r"[\u0600-\u06ff]")),
    ("ru", re.compile(r"[\u0400-\u04ff]")),                # Cyrillic
    ("th", re.compile(r"[\u0e00-\u0e7f]")),
    ("he", re.compile(r"[\u0590-\u05ff]")),
)
DEFAULT_LANGUAGE = "en"

_LETTERS = re.compile(r"[A-Za-z]")
_WHITESPACE = re.compile(r"\s")
_DIGITS = re.compile(r"[0-9]")
_PUNCTUATION = re.compile(r"[.,!?;:]")
# Anything outside letters, digits, whitespace, common punctuation and the
# scripts above counts as noise.
_IMPLAUSIBLE = re.compile(
    r"[^A-Za-z0-9_\s"
    r"\u00c0-\u017f"
    r"\u4e00-\u9fff\u3040-\u30ff\uac00-\ud7a3"
    r"\u0600-\u06ff\u0400-\u04ff\u0e00-\u0e7f\u0590-\u05ff"
    r".,!?;:()\[\]{}\-'\"/\\]"
)


@dataclass(frozen=True)
class ConfidenceWeights:
    base: float = 80.0
    length_thresholds: tuple[int, ...] = (10, 50, 100)
    length_bonus: float = 5.0
    letters_and_spaces_bonus: float = 5.0
    digits_bonus: float = 2.0
    punctuation_bonus: float = 3.0
    garbled_penalty: float = 10.0
    garbled_max_length: int = 20


DEFAULT_WEIGHTS = ConfidenceWeights()


def detect_language(text: str) -> str:
    for language, pattern in SCRIPT_LANGUAGES:
        if pattern.search(text):
            return language
    return DEFAULT_LANGUAGE


def estimate_confidence(text: str, weights: ConfidenceWeights = DEFAULT_WEIGHTS) -> float:
    """Score extracted text on 0-100 from its length and character mix."""
    if not text:
        return 0.0

    score = weights.base
    for threshold in weights.length_thresholds:
        if len(text) > threshold:
            score += weights.length_bonus

    if _LETTERS.search(text) and _WHITESPACE.search(text):
        score += weights.letters_and_spaces_bonus
    if _DIGITS.search(text):
        score += weights.digits_bonus
    if _PUNCTUATION.search(text):
        score += weights.punctuation_bonus

    if len(text) < weights.garbled_max_length and _IMPLAUSIBLE.search(text):
        score -= weights.garbled_penalty

    return clamp_confidence(score)


def clamp_confidence(value: float) -> float:
    return max(0.0, min(100.0, float(value)))

"""Vision-model text extraction for uploaded images.

Validates the format, normalizes the image, sends it to the configured vision
client with a fixed extraction prompt (retrying transient failures) and parses
the reply into text, language and confidence.

Config:
    VISION_PROVIDER=openai     # openai | mock
    OPENAI_API_KEY=...         # required when VISION_PROVIDER=openai
    DEFAULT_MODEL=gpt-4o
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.confidence.confidence import DEFAULT_WEIGHTS, ConfidenceWeights
from app.core.exceptions import InvalidRequestShapeError
from app.extraction.parser import parse_extraction_response
from app.extraction.retry import DEFAULT_ATTEMPTS, call_with_retry
from app.imaging.normalizer import ImageNormalizer, NormalizeOptions, ensure_supported
from app.ocr.base_ocr import VisionClient, VisionCompletion

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data model (shared with rest of app)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractionResult:
    text: str
    language: str
    confidence: float           # 0 – 100
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


# ---------------------------------------------------------------------------
# Extraction prompt
# ---------------------------------------------------------------------------

EXTRACTION_PROMPT = """\
Extract all text from this image with high accuracy.
Preserve formatting, line breaks, and structure.
If the image contains tables, preserve their structure.
Return the text in plain text format.
After the text, on a new line, add:
LANGUAGE: [detected language code]
CONFIDENCE: [your confidence level 0-100]"""

DEFAULT_MAX_TOKENS = 4096
DEFAULT_TEMPERATURE = 0.1


def _decode_image(image: bytes | str) -> bytes:
    if isinstance(image, bytes):
        return image
    payload = image.split(",", 1)[1] if image.startswith("data:") else image
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidRequestShapeError("Image payload is not valid base64") from exc


# ---------------------------------------------------------------------------
# Main Extractor class
# ---------------------------------------------------------------------------

class Extractor:
    def __init__(
        self,
        client: VisionClient,
        normalizer: ImageNormalizer | None = None,
        *,
        max_attempts: int = DEFAULT_ATTEMPTS,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = DEFAULT_TEMPERATURE,
        weights: ConfidenceWeights | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._normalizer = normalizer or ImageNormalizer()
        self._max_attempts = max_attempts
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._weights = weights or DEFAULT_WEIGHTS
        self._sleep = sleep

    async def extract(
        self,
        image: bytes | str,
        mime_type: str,
        model: str,
        options: NormalizeOptions | None = None,
    ) -> ExtractionResult:
        ensure_supported(mime_type)
        buffer = _decode_image(image)

        # Pillow work is CPU-bound; keep it off the event loop.
        outcome = await asyncio.to_thread(self._normalizer.normalize, buffer, mime_type, options)
        if not outcome.changed and outcome.reason != "within_limits":
            logger.warning("image_normalization_skipped", extra={"reason": outcome.reason})
        normalized = outcome.image

        encoded = base64.b64encode(normalized.data).decode("ascii")
        image_url = f"data:{normalized.mime_type};base64,{encoded}"

        async def _call() -> VisionCompletion:
            return await self._client.complete(
                model=model,
                prompt=EXTRACTION_PROMPT,
                image_url=image_url,
                max_tokens=self._max_tokens,
                temperature=self._temperature,
            )

        completion = await call_with_retry(_call, attempts=self._max_attempts, sleep=self._sleep)
        parsed = parse_extraction_response(completion.text, self._weights)

        logger.info(
            "extraction_complete",
            extra={
                "requested_model": model,
                "model": completion.model,
                "language": parsed.language,
                "confidence": parsed.confidence,
                "text_length": len(parsed.extracted_text),
            },
        )

        return ExtractionResult(
            text=parsed.extracted_text,
            language=parsed.language,
            confidence=parsed.confidence,
            model=completion.model or model,
            prompt_tokens=completion.prompt_tokens,
            completion_tokens=completion.completion_tokens,
        )

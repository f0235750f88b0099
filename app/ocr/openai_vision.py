"""OpenAI chat-completions vision client.

Config (via .env):
    VISION_PROVIDER=openai
    OPENAI_API_KEY=...
    OPENAI_BASE_URL=...        # optional, any OpenAI-compatible endpoint
    OPENAI_TIMEOUT_SECONDS=... # optional, SDK default otherwise

SDK errors propagate untouched; ``app.extraction.retry`` classifies them.
"""
from __future__ import annotations

import logging

from openai import AsyncOpenAI

from app.core.exceptions import UpstreamAuthError
from app.ocr.base_ocr import VisionClient, VisionCompletion

logger = logging.getLogger(__name__)


class OpenAIVisionClient(VisionClient):
    def __init__(
        self,
        api_key: str | None,
        *,
        base_url: str | None = None,
        timeout_seconds: float | None = None,
    ) -> None:
        self._api_key = api_key
        self._base_url = base_url
        self._timeout = timeout_seconds
        self._client: AsyncOpenAI | None = None   # lazy-init so startup works without a key

    def _get_client(self) -> AsyncOpenAI:
        if self._client is None:
            if not self._api_key:
                raise UpstreamAuthError("OpenAI API key is not configured. Set OPENAI_API_KEY.")
            kwargs: dict = {"api_key": self._api_key, "max_retries": 0}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            if self._timeout is not None:
                kwargs["timeout"] = self._timeout
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def complete(
        self,
        *,
        model: str,
        prompt: str,
        image_url: str,
        max_tokens: int,
        temperature: float,
    ) -> VisionCompletion:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
        )

        text = ""
        if response.choices:
            text = response.choices[0].message.content or ""
        usage = response.usage

        logger.debug("openai_vision_complete", extra={"model": response.model})

        return VisionCompletion(
            text=text,
            model=response.model or model,
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )

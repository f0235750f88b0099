from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class VisionCompletion:
    text: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0


class VisionClient:
    """A chat-completion provider that accepts an inline image."""

    async def complete(
        self,
        *,
        model: str,
        prompt: str,
        image_url: str,
        max_tokens: int,
        temperature: float,
    ) -> VisionCompletion:
        raise NotImplementedError

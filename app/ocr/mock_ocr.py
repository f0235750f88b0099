from __future__ import annotations

from app.ocr.base_ocr import VisionClient, VisionCompletion


class MockVisionClient(VisionClient):
    async def complete(
        self,
        *,
        model: str,
        prompt: str,
        image_url: str,
        max_tokens: int,
        temperature: float,
    ) -> VisionCompletion:
        # Canned reply for development without an API key
        return VisionCompletion(
            text="INVOICE #1023\nTotal: $300.00\nLANGUAGE: en\nCONFIDENCE: 90",
            model=model,
            prompt_tokens=0,
            completion_tokens=0,
        )

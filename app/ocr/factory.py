from __future__ import annotations

from app.core.config import Settings, settings as default_settings
from app.ocr.base_ocr import VisionClient
from app.ocr.mock_ocr import MockVisionClient


def get_vision_client(settings: Settings | None = None) -> VisionClient:
    """Return the configured vision client instance.

    VISION_PROVIDER options:
        mock   : canned marker reply (dev/test, no API key required)
        openai : OpenAIVisionClient (OPENAI_API_KEY required at call time)
    """
    settings = settings or default_settings
    provider = settings.vision_provider.lower().strip()

    if provider == "mock":
        return MockVisionClient()

    if provider == "openai":
        from app.ocr.openai_vision import OpenAIVisionClient
        return OpenAIVisionClient(
            settings.openai_api_key,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.openai_timeout_seconds,
        )

    raise ValueError(f"Unknown VISION_PROVIDER={settings.vision_provider!r}")

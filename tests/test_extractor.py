"""Extractor tests: scripted vision client, real normalizer and parser."""
from __future__ import annotations

import base64
import io

import httpx
import openai
import pytest
from PIL import Image

from app.core.exceptions import (
    InvalidRequestShapeError,
    UnsupportedFormatError,
    UpstreamAuthError,
    UpstreamRateLimitedError,
    UpstreamServerError,
)
from app.extraction.extractor import EXTRACTION_PROMPT, ExtractionResult, Extractor
from app.imaging.normalizer import NormalizeOptions
from app.ocr.base_ocr import VisionClient, VisionCompletion

_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
_REPLY = "INVOICE #1023\nTotal: $300.00\nLANGUAGE: en\nCONFIDENCE: 97"


def _status_error(status: int, headers: dict | None = None) -> openai.APIStatusError:
    response = httpx.Response(status, headers=headers or {}, request=_REQUEST)
    return openai.APIStatusError(f"Error code: {status}", response=response, body=None)


def _png(width: int = 40, height: int = 20) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color="white").save(buf, format="PNG")
    return buf.getvalue()


class ScriptedClient(VisionClient):
    """Replays queued outcomes; an exception in the script is raised."""

    def __init__(self, *script) -> None:
        self.script = list(script)
        self.calls: list[dict] = []

    async def complete(self, **kwargs) -> VisionCompletion:
        self.calls.append(kwargs)
        outcome = self.script.pop(0) if self.script else VisionCompletion(_REPLY, kwargs["model"], 800, 20)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome


def _extractor(client: VisionClient, fake_sleep, **kwargs) -> Extractor:
    return Extractor(client, sleep=fake_sleep, **kwargs)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_extract_returns_parsed_result(fake_sleep) -> None:
    client = ScriptedClient(VisionCompletion(_REPLY, "gpt-4o-2024-08-06", 812, 14))
    result = await _extractor(client, fake_sleep).extract(_png(), "image/png", "gpt-4o")

    assert result == ExtractionResult(
        text="INVOICE #1023\nTotal: $300.00",
        language="en",
        confidence=97,
        model="gpt-4o-2024-08-06",
        prompt_tokens=812,
        completion_tokens=14,
    )
    assert result.total_tokens == 826


@pytest.mark.asyncio
async def test_extract_sends_prompt_and_data_url(fake_sleep) -> None:
    client = ScriptedClient()
    data = _png()
    await _extractor(client, fake_sleep, max_tokens=1024, temperature=0.0).extract(data, "image/png", "gpt-4o-mini")

    [call] = client.calls
    assert call["model"] == "gpt-4o-mini"
    assert call["prompt"] == EXTRACTION_PROMPT
    assert call["max_tokens"] == 1024
    assert call["temperature"] == 0.0
    assert call["image_url"] == "data:image/png;base64," + base64.b64encode(data).decode()


@pytest.mark.asyncio
async def test_extract_accepts_base64_data_url(fake_sleep) -> None:
    client = ScriptedClient()
    data = _png()
    encoded = base64.b64encode(data).decode()

    result = await _extractor(client, fake_sleep).extract(f"data:image/png;base64,{encoded}", "image/png", "gpt-4o")

    assert result.text == "INVOICE #1023\nTotal: $300.00"
    assert client.calls[0]["image_url"].endswith(encoded)


@pytest.mark.asyncio
async def test_extract_rejects_invalid_base64(fake_sleep) -> None:
    client = ScriptedClient()
    with pytest.raises(InvalidRequestShapeError):
        await _extractor(client, fake_sleep).extract("not*base64!", "image/png", "gpt-4o")
    assert client.calls == []


@pytest.mark.asyncio
async def test_extract_sends_normalized_image(fake_sleep) -> None:
    client = ScriptedClient()
    await _extractor(client, fake_sleep).extract(
        _png(800, 400), "image/png", "gpt-4o", NormalizeOptions(max_dimension=100)
    )

    url = client.calls[0]["image_url"]
    header, encoded = url.split(",", 1)
    assert header == "data:image/png;base64"
    with Image.open(io.BytesIO(base64.b64decode(encoded))) as img:
        assert img.size == (100, 50)


@pytest.mark.asyncio
async def test_heic_upload_is_sent_as_jpeg(fake_sleep) -> None:
    buf = io.BytesIO()
    Image.new("RGB", (48, 24), color="white").save(buf, format="HEIF")
    client = ScriptedClient()

    await _extractor(client, fake_sleep).extract(buf.getvalue(), "image/heic", "gpt-4o")

    assert client.calls[0]["image_url"].startswith("data:image/jpeg;base64,")


@pytest.mark.asyncio
async def test_normalization_failure_sends_original_bytes(fake_sleep) -> None:
    client = ScriptedClient()
    data = b"not really a png"
    result = await _extractor(client, fake_sleep).extract(data, "image/png", "gpt-4o")

    assert client.calls[0]["image_url"] == "data:image/png;base64," + base64.b64encode(data).decode()
    assert result.language == "en"


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_unsupported_format_never_reaches_client(fake_sleep) -> None:
    client = ScriptedClient()
    with pytest.raises(UnsupportedFormatError):
        await _extractor(client, fake_sleep).extract(b"GIF89a", "image/gif", "gpt-4o")
    assert client.calls == []


# ---------------------------------------------------------------------------
# Retry behavior
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_two_transient_failures_then_success(fake_sleep, recorded_sleeps) -> None:
    client = ScriptedClient(_status_error(503), openai.APIConnectionError(request=_REQUEST))
    result = await _extractor(client, fake_sleep).extract(_png(), "image/png", "gpt-4o")

    assert result.confidence == 97
    assert len(client.calls) == 3
    assert recorded_sleeps == [1.0, 2.0]


@pytest.mark.asyncio
async def test_auth_failure_is_not_retried(fake_sleep, recorded_sleeps) -> None:
    client = ScriptedClient(_status_error(401))
    with pytest.raises(UpstreamAuthError):
        await _extractor(client, fake_sleep).extract(_png(), "image/png", "gpt-4o")

    assert len(client.calls) == 1
    assert recorded_sleeps == []


@pytest.mark.asyncio
async def test_provider_retry_after_hint_is_honored(fake_sleep, recorded_sleeps) -> None:
    client = ScriptedClient(_status_error(429, {"retry-after": "3"}))
    await _extractor(client, fake_sleep).extract(_png(), "image/png", "gpt-4o")

    assert recorded_sleeps == [3.0]


@pytest.mark.asyncio
async def test_rate_limit_exhaustion_surfaces_429(fake_sleep, recorded_sleeps) -> None:
    limited = [_status_error(429, {"retry-after": "2"}) for _ in range(3)]
    client = ScriptedClient(*limited)

    with pytest.raises(UpstreamRateLimitedError) as exc_info:
        await _extractor(client, fake_sleep).extract(_png(), "image/png", "gpt-4o")

    assert exc_info.value.status_code == 429
    assert len(client.calls) == 3
    assert recorded_sleeps == [2.0, 2.0]


@pytest.mark.asyncio
async def test_attempt_budget_is_configurable(fake_sleep, recorded_sleeps) -> None:
    client = ScriptedClient(_status_error(500), _status_error(500))
    with pytest.raises(UpstreamServerError):
        await _extractor(client, fake_sleep, max_attempts=2).extract(_png(), "image/png", "gpt-4o")

    assert len(client.calls) == 2
    assert recorded_sleeps == [1.0]

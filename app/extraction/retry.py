"""Upstream error classification and the bounded retry driver.

``classify_upstream_error`` only answers "what kind of failure is this";
``call_with_retry`` decides whether to try again and how long to wait.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
import openai
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from app.core.exceptions import (
    AppError,
    UpstreamAuthError,
    UpstreamError,
    UpstreamNotFoundError,
    UpstreamQuotaExceededError,
    UpstreamRateLimitedError,
    UpstreamServerError,
    UpstreamTimeoutError,
    UpstreamTransportError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_ATTEMPTS = 3


def _retry_after_seconds(response: httpx.Response | None) -> float | None:
    if response is None:
        return None
    raw = response.headers.get("retry-after")
    if raw is None:
        return None
    try:
        return max(0.0, float(raw))
    except ValueError:
        return None


def _error_code(exc: openai.APIStatusError) -> str | None:
    body = exc.body
    if isinstance(body, dict):
        error = body.get("error", body)
        if isinstance(error, dict):
            return error.get("code")
    return getattr(exc, "code", None)


def classify_upstream_error(exc: BaseException) -> AppError:
    """Map a provider/transport failure onto the error taxonomy."""
    if isinstance(exc, AppError):
        return exc

    if isinstance(exc, (openai.APITimeoutError, httpx.TimeoutException, asyncio.TimeoutError)):
        return UpstreamTimeoutError("Request to the vision model timed out. Please try again.")

    if isinstance(exc, (openai.APIConnectionError, httpx.TransportError)):
        return UpstreamTransportError(f"Could not reach the vision model: {exc}")

    if isinstance(exc, openai.APIStatusError):
        status = exc.status_code
        if status == 401:
            return UpstreamAuthError("Invalid OpenAI API key. Please check your configuration.")
        if status == 402 or (status == 429 and _error_code(exc) == "insufficient_quota"):
            return UpstreamQuotaExceededError("Insufficient OpenAI API quota. Please check your account.")
        if status == 404:
            return UpstreamNotFoundError("OpenAI model not found. Please check the model name.")
        if status == 429:
            retry_after = _retry_after_seconds(exc.response)
            hint = f" after {retry_after:g} seconds" if retry_after is not None else " later"
            return UpstreamRateLimitedError(
                f"Rate limit exceeded. Please try again{hint}.", retry_after=retry_after
            )
        if status >= 500:
            return UpstreamServerError("OpenAI server error. Please try again.")
        return UpstreamError(exc.message or "OpenAI API error occurred.")

    return UpstreamError(str(exc) or "An unknown error occurred while processing the image.")


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, AppError) and exc.retryable


def wait_retry_hint_or_exponential(retry_state: RetryCallState) -> float:
    """Provider's retry-after hint for rate limits, otherwise 1s, 2s, 4s, ..."""
    error = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(error, UpstreamRateLimitedError) and error.retry_after is not None:
        return error.retry_after
    return float(2 ** (retry_state.attempt_number - 1))


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "upstream_retry_scheduled",
        extra={
            "attempt": retry_state.attempt_number,
            "error_type": type(error).__name__,
            "wait_seconds": retry_state.next_action.sleep if retry_state.next_action else None,
        },
    )


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    attempts: int = DEFAULT_ATTEMPTS,
    classify: Callable[[BaseException], AppError] = classify_upstream_error,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run *fn* up to *attempts* times, retrying only retryable classified errors.

    The last classified error is raised once the budget is spent; terminal
    errors are raised after the first attempt.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=wait_retry_hint_or_exponential,
        retry=retry_if_exception(_is_retryable),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            try:
                return await fn()
            except Exception as exc:
                classified = classify(exc)
                if classified is exc:
                    raise
                raise classified from exc
    raise AssertionError("unreachable: tenacity either returns or reraises")

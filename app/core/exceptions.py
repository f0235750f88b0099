"""Error taxonomy shared by the extraction pipeline, the result store and the API.

Every error carries a human-readable ``message`` and the HTTP status the API
layer answers with. ``retryable`` is only consulted by the upstream retry
driver (``app.extraction.retry``).
"""
from __future__ import annotations


class AppError(Exception):
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


# ── Input errors ───────────────────────────────────────────────────────────────

class UnsupportedFormatError(AppError):
    status_code = 400


class PayloadTooLargeError(AppError):
    status_code = 400


class InvalidRequestShapeError(AppError):
    status_code = 400


# ── Upstream (vision model) errors ─────────────────────────────────────────────

class UpstreamError(AppError):
    """Unclassified provider failure; surfaced with the provider's raw message."""

    status_code = 500
    retryable = True


class UpstreamAuthError(UpstreamError):
    status_code = 401
    retryable = False


class UpstreamQuotaExceededError(UpstreamError):
    status_code = 402
    retryable = False


class UpstreamNotFoundError(UpstreamError):
    retryable = False


class UpstreamRateLimitedError(UpstreamError):
    status_code = 429

    def __init__(self, message: str, retry_after: float | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamServerError(UpstreamError):
    pass


class UpstreamTransportError(UpstreamError):
    pass


class UpstreamTimeoutError(UpstreamTransportError):
    status_code = 504


# ── Result store errors ────────────────────────────────────────────────────────

class StorageConnectError(AppError):
    pass


class StorageWriteError(AppError):
    """Text was extracted but the record could not be saved."""


class InvalidIdentifierError(AppError):
    status_code = 400


# ── Inbound admission ──────────────────────────────────────────────────────────

class ClientRateLimitedError(AppError):
    """This service's own per-client limit, as opposed to the provider's."""

    status_code = 429

    def __init__(self, message: str, headers: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.headers = headers or {}

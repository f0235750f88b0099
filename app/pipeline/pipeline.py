"""Request pipeline: validates an upload, runs extraction, persists the record.

Extraction and persistence fail distinctly: once text has been recognized,
any storage failure surfaces as ``StorageWriteError`` so callers can tell
"not recognized" from "recognized but not saved".
"""
from __future__ import annotations

import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import (
    InvalidRequestShapeError,
    PayloadTooLargeError,
    StorageConnectError,
    StorageWriteError,
)
from app.db.models import Screenshot
from app.db.repository import ScreenshotRepository
from app.db.session import Database
from app.extraction.extractor import ExtractionResult, Extractor
from app.imaging.normalizer import NormalizeOptions, ensure_supported

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


@dataclass(frozen=True)
class ImageUpload:
    content: bytes
    mime_type: str
    model: str
    filename: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class ProcessedExtraction:
    record: Screenshot
    result: ExtractionResult
    processing_time_ms: int
    extraction_ms: int = 0


def default_filename(mime_type: str) -> str:
    subtype = mime_type.partition("/")[2] or "png"
    return f"screenshot-{int(time.time() * 1000)}.{subtype}"


class ExtractionPipeline:
    def __init__(
        self,
        database: Database,
        extractor: Extractor,
        *,
        max_upload_bytes: int = 10 * _MB,
        allowed_models: Iterable[str] = ("gpt-4o", "gpt-4o-mini"),
        normalize_options: NormalizeOptions | None = None,
    ) -> None:
        self._database = database
        self._extractor = extractor
        self._max_upload_bytes = max_upload_bytes
        self._allowed_models = frozenset(allowed_models)
        self._normalize_options = normalize_options or NormalizeOptions(max_size=max_upload_bytes)

    # ------------------------------------------------------------------ #
    #  Public entry point                                                  #
    # ------------------------------------------------------------------ #

    async def process(self, upload: ImageUpload) -> ProcessedExtraction:
        t0 = time.monotonic()
        self.validate(upload)

        t_extract = time.monotonic()
        result = await self._extractor.extract(
            upload.content,
            upload.mime_type,
            upload.model,
            self._normalize_options,
        )
        extraction_ms = int((time.monotonic() - t_extract) * 1000)

        record = await self._persist(upload, result)
        processing_time_ms = int((time.monotonic() - t0) * 1000)

        logger.info(
            "processing_complete",
            extra={
                "screenshot_id": str(record.id),
                "model": result.model,
                "tokens": result.total_tokens,
                "duration_ms": processing_time_ms,
            },
        )
        return ProcessedExtraction(
            record=record,
            result=result,
            processing_time_ms=processing_time_ms,
            extraction_ms=extraction_ms,
        )

    def validate(self, upload: ImageUpload) -> None:
        if not upload.content:
            raise InvalidRequestShapeError("No image file provided")

        size = len(upload.content)
        if size > self._max_upload_bytes:
            raise PayloadTooLargeError(
                f"File size exceeds limit of {self._max_upload_bytes / _MB:g}MB. "
                f"Received: {size / _MB:.2f}MB"
            )

        ensure_supported(upload.mime_type)

        if upload.model not in self._allowed_models:
            raise InvalidRequestShapeError(
                f"Unsupported model {upload.model!r}. Choose one of: {', '.join(sorted(self._allowed_models))}"
            )

    # ------------------------------------------------------------------ #
    #  Persistence                                                        #
    # ------------------------------------------------------------------ #

    async def _persist(self, upload: ImageUpload, result: ExtractionResult) -> Screenshot:
        try:
            async with self._database.session() as session:
                return await ScreenshotRepository(session).create(
                    filename=upload.filename or default_filename(upload.mime_type),
                    extracted_text=result.text,
                    language=result.language,
                    confidence=result.confidence,
                    model=result.model,
                    prompt_tokens=result.prompt_tokens,
                    completion_tokens=result.completion_tokens,
                    image_size=len(upload.content),
                    mime_type=upload.mime_type,
                    user_id=upload.user_id,
                )
        except StorageConnectError:
            logger.exception("persist_failed_connect")
            raise
        except SQLAlchemyError as exc:
            logger.exception("persist_failed_write")
            raise StorageWriteError(
                "Text was extracted but the result could not be saved to the database"
            ) from exc

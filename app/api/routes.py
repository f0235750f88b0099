from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, Request, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AppError, ClientRateLimitedError, InvalidRequestShapeError
from app.db.repository import ScreenshotRepository, parse_identifier
from app.db.session import get_session
from app.imaging.normalizer import estimate_image_tokens
from app.pipeline.pipeline import ExtractionPipeline, ImageUpload
from app.pipeline.request_log import RequestLog, RequestLogEntry
from app.ratelimit.limiter import RateLimitDecision, RateLimiter, client_identity
from app.schemas import ApiResponse, ExtractionOut, HistoryItem, RequestLogOut, StatsOut

logger = logging.getLogger(__name__)
router = APIRouter()

HISTORY_DEFAULT_LIMIT = 50
HISTORY_MAX_LIMIT = 100


def get_pipeline(request: Request) -> ExtractionPipeline:
    return request.app.state.pipeline


def get_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.rate_limiter


def get_request_log(request: Request) -> RequestLog:
    return request.app.state.request_log


def _rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_time * 1000)),
    }


def _parse_int(raw: str | None, default: int, *, minimum: int) -> int:
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= minimum else default


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/ocr", response_model=ApiResponse, response_model_exclude_none=True)
async def extract_text(
    request: Request,
    response: Response,
    image: UploadFile | None = File(None),
    model: str | None = Form(None),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
    request_log: RequestLog = Depends(get_request_log),
) -> ApiResponse:
    ip = client_identity(request.headers)
    entry = RequestLogEntry(ip=ip, model=model or request.app.state.settings.default_model)

    decision = await rate_limiter.check(ip)
    headers = _rate_limit_headers(decision)
    if not decision.allowed:
        entry.error = "Rate limit exceeded"
        request_log.record(entry)
        reset_at = datetime.fromtimestamp(decision.reset_time, tz=timezone.utc).isoformat()
        raise ClientRateLimitedError(
            f"Rate limit exceeded. Maximum {decision.limit} requests per minute. Try again after {reset_at}",
            headers={**headers, "Retry-After": str(decision.retry_after())},
        )

    try:
        if image is None:
            raise InvalidRequestShapeError("No image file provided")

        content = await image.read()
        entry.image_size = len(content)
        entry.image_format = image.content_type or ""
        entry.estimated_tokens = estimate_image_tokens(len(content))

        processed = await pipeline.process(
            ImageUpload(
                content=content,
                mime_type=image.content_type or "",
                model=entry.model,
                filename=image.filename or None,
            )
        )
    except AppError as exc:
        entry.error = exc.message
        request_log.record(entry)
        raise
    except Exception as exc:
        entry.error = str(exc) or type(exc).__name__
        request_log.record(entry)
        raise

    entry.success = True
    entry.upstream_ms = processed.extraction_ms
    entry.tokens_used = processed.result.total_tokens
    request_log.record(entry)

    response.headers.update(headers)
    result = processed.result
    return ApiResponse(
        success=True,
        data=ExtractionOut(
            id=processed.record.id,
            extracted_text=result.text,
            confidence=result.confidence,
            language=result.language,
            model=result.model,
            processing_time_ms=processed.processing_time_ms,
        ),
    )


@router.get("/ocr/logs", response_model=RequestLogOut)
async def get_request_logs(
    limit: str | None = None,
    request_log: RequestLog = Depends(get_request_log),
) -> RequestLogOut:
    entries = request_log.recent(_parse_int(limit, 100, minimum=1))
    return RequestLogOut(logs=[e.to_dict() for e in entries], total=len(request_log))


@router.get("/history", response_model=ApiResponse, response_model_exclude_none=True)
async def get_history(
    limit: str | None = None,
    skip: str | None = None,
    session: AsyncSession = Depends(get_session),
) -> ApiResponse:
    page_size = min(_parse_int(limit, HISTORY_DEFAULT_LIMIT, minimum=1), HISTORY_MAX_LIMIT)
    offset = _parse_int(skip, 0, minimum=0)

    screenshots = await ScreenshotRepository(session).find_all(limit=page_size, skip=offset)
    items = [
        HistoryItem(
            id=s.id,
            filename=s.filename,
            extracted_text=s.extracted_text,
            created_at=s.created_at,
        )
        for s in screenshots
    ]
    return ApiResponse(success=True, data=items)


@router.get("/history/stats", response_model=ApiResponse, response_model_exclude_none=True)
async def get_history_stats(session: AsyncSession = Depends(get_session)) -> ApiResponse:
    stats = await ScreenshotRepository(session).get_stats()
    return ApiResponse(
        success=True,
        data=StatsOut(
            total_count=stats.total_count,
            total_text_length=stats.total_text_length,
            average_confidence=stats.average_confidence,
            total_tokens=stats.total_tokens,
        ),
    )


@router.delete("/history", response_model=ApiResponse, response_model_exclude_none=True)
async def delete_history_item(
    request: Request,
    screenshot_id: str | None = Query(None, alias="id"),
    session: AsyncSession = Depends(get_session),
) -> ApiResponse:
    if not screenshot_id:
        try:
            body = await request.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("id"):
            screenshot_id = str(body["id"])

    if not screenshot_id:
        raise InvalidRequestShapeError(
            "No ID provided. Provide ID in query parameter (?id=...) or request body ({\"id\": \"...\"})"
        )

    # Raises InvalidIdentifierError (400) for malformed ids
    parse_identifier(screenshot_id)

    deleted = await ScreenshotRepository(session).delete_by_id(screenshot_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Screenshot not found")

    logger.info("history_item_deleted", extra={"screenshot_id": screenshot_id})
    return ApiResponse(success=True, message="Screenshot deleted successfully")

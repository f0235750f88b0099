from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.errors import register_exception_handlers
from app.api.routes import router
from app.core.config import Settings, settings as default_settings
from app.core.logging import configure_logging
from app.db.init_db import init_db
from app.db.session import Database
from app.extraction.extractor import Extractor
from app.imaging.normalizer import NormalizeOptions
from app.ocr.base_ocr import VisionClient
from app.ocr.factory import get_vision_client
from app.pipeline.pipeline import ExtractionPipeline
from app.pipeline.request_log import RequestLog
from app.ratelimit.limiter import RateLimiter


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.getLogger(__name__).info("startup")
    await init_db(app.state.database)
    app.state.rate_limiter.start_sweeper()
    try:
        yield
    finally:
        await app.state.rate_limiter.stop_sweeper()
        await app.state.database.dispose()
        logging.getLogger(__name__).info("shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    vision_client: VisionClient | None = None,
    database: Database | None = None,
    rate_limiter: RateLimiter | None = None,
) -> FastAPI:
    settings = settings or default_settings
    configure_logging(settings.log_level)

    app = FastAPI(title="Screenshot OCR", version="0.1.0", lifespan=_lifespan)
    app.include_router(router)
    register_exception_handlers(app)

    database = database or Database(
        settings.database_url,
        connect_attempts=settings.db_connect_attempts,
        backoff_seconds=settings.db_connect_backoff_seconds,
    )
    extractor = Extractor(
        vision_client or get_vision_client(settings),
        max_attempts=settings.extraction_max_attempts,
        max_tokens=settings.extraction_max_tokens,
        temperature=settings.extraction_temperature,
    )

    app.state.settings = settings
    app.state.database = database
    app.state.rate_limiter = rate_limiter or RateLimiter(
        settings.rate_limit_max_requests,
        settings.rate_limit_window_seconds,
        sweep_interval_seconds=settings.rate_limit_sweep_interval_seconds,
    )
    app.state.request_log = RequestLog(settings.request_log_size)
    app.state.pipeline = ExtractionPipeline(
        database,
        extractor,
        max_upload_bytes=settings.max_upload_bytes,
        allowed_models=settings.allowed_models,
        normalize_options=NormalizeOptions(
            max_size=settings.image_max_size,
            max_dimension=settings.image_max_dimension,
            quality=settings.image_quality,
        ),
    )

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to the Screenshot OCR API",
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()

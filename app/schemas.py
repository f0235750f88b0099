from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel


class ApiResponse(BaseModel):
    """Envelope returned by every endpoint except /health."""
    success: bool
    data: Any | None = None
    error: str | None = None
    message: str | None = None


class ExtractionOut(BaseModel):
    id: uuid.UUID
    extracted_text: str
    confidence: float
    language: str
    model: str
    processing_time_ms: int


class HistoryItem(BaseModel):
    id: uuid.UUID
    filename: str
    extracted_text: str
    created_at: datetime


class StatsOut(BaseModel):
    total_count: int
    total_text_length: int
    average_confidence: float
    total_tokens: int


class RequestLogOut(BaseModel):
    logs: list[dict]
    total: int
